"""Run fragments of source files in isolation.

The package is the backend of an editor snippet runner.  Given a saved
file and a line range it decides how much surrounding code the range
needs, writes that code into a disposable work directory, runs the
language's toolchain and publishes the captured output.

The top-level modules include:

* ``config`` – configuration handling for environment variables.
* ``registry`` – language descriptors and support levels.
* ``resolver`` – extraction of the selection and the context it needs.
* ``workspace`` – the shared work directory.
* ``executor`` – compile/run chains and the generic fallback.
* ``server`` – the job server serializing requests.
* ``api`` / ``stdio`` – notification transports.
* ``client`` – session-handle launcher for editor integrations.
"""

__version__ = "0.1.0"
