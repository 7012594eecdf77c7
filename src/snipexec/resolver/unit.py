"""Request and result types flowing through the resolver."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..errors import ResolutionIncomplete
from ..registry import LanguageDescriptor, SupportLevel


class Provenance(str, enum.Enum):
    SELECTION = "selection"
    IMPORT = "import"
    FILE = "file-scope"
    PROJECT = "project-scope"


@dataclass(frozen=True)
class ExecutionRequest:
    """One Run notification.  Lines are 1-indexed and inclusive."""

    file_path: Path
    first_line: int
    last_line: int
    script_dir: Path
    filetype: Optional[str] = None
    level: Optional[SupportLevel] = None

    @property
    def source_path(self) -> Path:
        path = Path(self.file_path).expanduser()
        if not path.is_absolute():
            path = Path(self.script_dir) / path
        return path


@dataclass(frozen=True)
class Fragment:
    text: str
    provenance: Provenance
    origin: Path
    line: int
    # Set for project files materialized as whole files.
    relative_path: Optional[Path] = None


@dataclass
class ResolvedUnit:
    descriptor: LanguageDescriptor
    level: SupportLevel
    fragments: List[Fragment] = field(default_factory=list)
    libraries: List[Path] = field(default_factory=list)
    project_root: Optional[Path] = None
    misses: List[ResolutionIncomplete] = field(default_factory=list)

    def of(self, provenance: Provenance) -> List[Fragment]:
        return [f for f in self.fragments if f.provenance is provenance]

    @property
    def code(self) -> str:
        return "\n".join(f.text for f in self.of(Provenance.SELECTION))

    def fingerprint(self) -> str:
        """Stable textual form, used to compare two resolutions."""
        parts = [f"{f.provenance.value}:{f.origin}:{f.line}\n{f.text}" for f in self.fragments]
        parts.extend(f"library:{p}" for p in self.libraries)
        return "\n--\n".join(parts)
