"""Language registry.

Every supported language is a :class:`LanguageDescriptor` entry in a
static table.  A descriptor carries data only (command templates, file
extension, boilerplate, the regular expressions the resolver uses to find
imports and top-level definitions) so adding a language is a table entry,
not new control flow.

Command templates are argv lists whose tokens may contain the
placeholders ``{main}``, ``{binary}``, ``{workdir}`` and ``{classpath}``.
A token that is exactly ``{sources}`` expands to every materialized
source file.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple


class SupportLevel(enum.IntEnum):
    """Ordered capability tiers; each is a superset of the one below."""

    UNSUPPORTED = 0
    LINE = 1
    BLOC = 2
    IMPORT = 3
    FILE = 4
    PROJECT = 5
    SYSTEM = 6

    @classmethod
    def parse(cls, value: "str | int | SupportLevel") -> "SupportLevel":
        if isinstance(value, SupportLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown support level: {value}")


@dataclass(frozen=True)
class LanguageDescriptor:
    """Static description of how to run one language."""

    name: str
    level: SupportLevel
    extension: str
    commands: Tuple[Tuple[str, ...], ...]
    template: str = "{imports}\n{definitions}\n{body}\n"
    aliases: Tuple[str, ...] = ()
    main_name: str = "main"
    default_imports: Tuple[str, ...] = ()
    import_patterns: Tuple[str, ...] = ()
    definition_patterns: Tuple[str, ...] = ()
    block_style: str = "braces"
    project_markers: Tuple[str, ...] = (".git",)
    project_layout: str = "inline"
    library_globs: Tuple[str, ...] = ()
    system_library_dirs: Tuple[str, ...] = ()
    separate_stderr: bool = True
    # Environment variable through which the interpreter finds modules
    # next to the source file and under the project root.
    path_env: Optional[str] = None

    @property
    def identifiers(self) -> Tuple[str, ...]:
        return (self.name,) + self.aliases

    @property
    def main_file(self) -> str:
        return self.main_name + self.extension


_PY_IDENT = r"[A-Za-z_]\w*"
_JS_IDENT = r"[A-Za-z_$][\w$]*"

LANGUAGES: Tuple[LanguageDescriptor, ...] = (
    LanguageDescriptor(
        name="python",
        aliases=("python3", "py"),
        level=SupportLevel.PROJECT,
        extension=".py",
        commands=(("python3", "{main}"),),
        import_patterns=(r"^(?:import|from)\s+[\w.]+",),
        definition_patterns=(
            rf"^(?:async\s+)?def\s+(?P<name>{_PY_IDENT})",
            rf"^class\s+(?P<name>{_PY_IDENT})",
            rf"^(?P<name>{_PY_IDENT})\s*(?::[^=]+)?=(?!=)",
        ),
        block_style="indent",
        project_markers=("pyproject.toml", "setup.py", "setup.cfg", ".git"),
        project_layout="inline",
        path_env="PYTHONPATH",
    ),
    LanguageDescriptor(
        name="javascript",
        aliases=("js", "node"),
        level=SupportLevel.FILE,
        extension=".js",
        commands=(("node", "{main}"),),
        import_patterns=(
            r"^import\s",
            rf"^(?:const|let|var)\s+[\w${{}}\s,:]+=\s*require\(",
        ),
        definition_patterns=(
            rf"^(?:export\s+)?(?:async\s+)?function\*?\s+(?P<name>{_JS_IDENT})",
            rf"^(?:export\s+)?class\s+(?P<name>{_JS_IDENT})",
            rf"^(?:export\s+)?(?:const|let|var)\s+(?P<name>{_JS_IDENT})\s*=",
        ),
        project_markers=("package.json", ".git"),
    ),
    LanguageDescriptor(
        name="bash",
        aliases=("sh",),
        level=SupportLevel.BLOC,
        extension=".sh",
        commands=(("bash", "{main}"),),
        template="{body}\n",
    ),
    LanguageDescriptor(
        name="c",
        level=SupportLevel.IMPORT,
        extension=".c",
        commands=(("gcc", "{main}", "-o", "{binary}"), ("{binary}",)),
        template="{imports}\n{definitions}\nint main() {{\n{body}\nreturn 0;\n}}\n",
        default_imports=("#include <stdio.h>",),
        import_patterns=(r"^\s*#\s*include\b",),
    ),
    LanguageDescriptor(
        name="cpp",
        aliases=("c++", "cxx"),
        level=SupportLevel.IMPORT,
        extension=".cpp",
        commands=(("g++", "{main}", "-o", "{binary}"), ("{binary}",)),
        template="{imports}\n{definitions}\nint main() {{\n{body}\nreturn 0;\n}}\n",
        default_imports=("#include <iostream>",),
        import_patterns=(r"^\s*#\s*include\b",),
    ),
    LanguageDescriptor(
        name="rust",
        aliases=("rust-lang", "rs"),
        level=SupportLevel.BLOC,
        extension=".rs",
        commands=(("rustc", "-O", "--out-dir", "{workdir}", "{main}"), ("{binary}",)),
        template="fn main() {{\n{body}\n}}\n",
    ),
    LanguageDescriptor(
        name="go",
        aliases=("golang",),
        level=SupportLevel.IMPORT,
        extension=".go",
        commands=(("go", "run", "{main}"),),
        template="package main\n\n{imports}\n{definitions}\nfunc main() {{\n{body}\n}}\n",
        import_patterns=(r"^import\b",),
        project_markers=("go.mod", ".git"),
    ),
    LanguageDescriptor(
        name="java",
        level=SupportLevel.SYSTEM,
        extension=".java",
        main_name="Main",
        commands=(
            ("javac", "-d", "{workdir}", "-cp", "{classpath}", "{sources}"),
            ("java", "-cp", "{classpath}", "Main"),
        ),
        template=(
            "{imports}\n\npublic class Main {{\n"
            "public static void main(String[] args) throws Exception {{\n{body}\n}}\n}}\n\n"
            "{definitions}\n"
        ),
        import_patterns=(r"^import\s+(?:static\s+)?[\w.*]+\s*;",),
        definition_patterns=(
            r"^(?:(?:public|abstract|final|sealed)\s+)*(?:class|interface|enum|record)\s+(?P<name>\w+)",
        ),
        project_markers=("pom.xml", "build.gradle", "build.gradle.kts", ".git"),
        project_layout="mirror",
        library_globs=("lib/*.jar", "libs/*.jar", "target/dependency/*.jar", "build/libs/*.jar"),
        system_library_dirs=("/usr/share/java",),
    ),
    LanguageDescriptor(
        name="lua",
        level=SupportLevel.LINE,
        extension=".lua",
        commands=(("lua", "{main}"),),
        template="{body}\n",
    ),
    LanguageDescriptor(
        name="ruby",
        aliases=("rb",),
        level=SupportLevel.IMPORT,
        extension=".rb",
        commands=(("ruby", "{main}"),),
        template="{imports}\n{body}\n",
        import_patterns=(r"^require(?:_relative)?\b",),
        project_markers=("Gemfile", ".git"),
        path_env="RUBYLIB",
    ),
)

# Filetypes without a descriptor that a fallback delegate knows how to run,
# mapped to the delegate's own language name.
FALLBACK_LANGUAGES: Dict[str, str] = {
    "perl": "perl",
    "php": "php",
    "r": "r",
    "julia": "julia",
    "haskell": "haskell",
    "elixir": "elixir",
    "ocaml": "ocaml",
    "typescript": "typescript",
    "ts": "typescript",
    "kotlin": "kotlin",
    "scala": "scala",
    "swift": "swift",
    "racket": "racket",
    "scheme": "scheme",
    "tcl": "tcl",
}

_EXTRA_EXTENSIONS: Dict[str, str] = {
    ".pl": "perl",
    ".php": "php",
    ".r": "r",
    ".jl": "julia",
    ".hs": "haskell",
    ".exs": "elixir",
    ".ex": "elixir",
    ".ml": "ocaml",
    ".ts": "typescript",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".scala": "scala",
    ".swift": "swift",
    ".rkt": "racket",
    ".scm": "scheme",
    ".tcl": "tcl",
    ".h": "c",
    ".hpp": "cpp",
    ".cc": "cpp",
    ".mjs": "javascript",
}


class LanguageRegistry:
    """Lookup table over :data:`LANGUAGES`."""

    def __init__(
        self,
        languages: Iterable[LanguageDescriptor] = LANGUAGES,
        fallback: Optional[Dict[str, str]] = None,
    ) -> None:
        self._by_id: Dict[str, LanguageDescriptor] = {}
        self._by_ext: Dict[str, str] = dict(_EXTRA_EXTENSIONS)
        for descriptor in languages:
            for ident in descriptor.identifiers:
                self._by_id[ident.lower()] = descriptor
            self._by_ext.setdefault(descriptor.extension, descriptor.name)
        self.fallback = dict(FALLBACK_LANGUAGES if fallback is None else fallback)

    def __iter__(self):
        seen = []
        for descriptor in self._by_id.values():
            if descriptor not in seen:
                seen.append(descriptor)
        return iter(seen)

    def lookup(self, filetype: str) -> Optional[LanguageDescriptor]:
        return self._by_id.get((filetype or "").strip().lower())

    def level_of(self, filetype: str) -> SupportLevel:
        descriptor = self.lookup(filetype)
        return descriptor.level if descriptor else SupportLevel.UNSUPPORTED

    def fallback_name(self, filetype: str) -> Optional[str]:
        return self.fallback.get((filetype or "").strip().lower())

    def detect(self, path: Path) -> str:
        """Guess a filetype from the file extension; empty when unknown."""
        return self._by_ext.get(path.suffix.lower(), "")


default_registry = LanguageRegistry()
