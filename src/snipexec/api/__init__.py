"""
Expose the FastAPI application factory.

The application needs a running :class:`~snipexec.server.JobServer`, so
it is built by ``python -m snipexec serve`` rather than at import time.
"""

from .main import create_app

__all__ = ["create_app"]
