"""The disposable work directory.

One directory is owned by the job server for its whole lifetime.  Each
language gets a sub-directory; a run overwrites the files it needs and
leaves anything else from earlier runs in place (no history is kept, and
nothing relies on stale files).  Only :meth:`WorkspaceManager.clean`
removes content.

The manager is not safe for concurrent materialize calls.  Callers hold
:attr:`WorkspaceManager.lock` for the whole materialize + execute
sequence so two runs never interleave their files.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .errors import WorkspaceIOFailed
from .resolver import Provenance, ResolvedUnit

logger = logging.getLogger(__name__)


@dataclass
class MaterializedUnit:
    """Files written for one run, as seen by the execution engine."""

    workdir: Path
    main: Path
    sources: List[Path] = field(default_factory=list)
    libraries: List[Path] = field(default_factory=list)
    # Directories the interpreter should search for the user's own modules.
    search_paths: List[Path] = field(default_factory=list)

    @property
    def binary(self) -> Path:
        return self.main.with_suffix("")

    @property
    def classpath(self) -> str:
        return os.pathsep.join([str(self.workdir)] + [str(p) for p in self.libraries])


def render(unit: ResolvedUnit) -> str:
    """Assemble the main source file from the unit's fragments."""
    descriptor = unit.descriptor
    imports: List[str] = list(descriptor.default_imports)
    known = {line.strip() for line in imports}
    for fragment in unit.of(Provenance.IMPORT):
        if fragment.text.strip() not in known:
            known.add(fragment.text.strip())
            imports.append(fragment.text)

    definitions = [
        f.text
        for f in unit.fragments
        if (f.provenance is Provenance.PROJECT and f.relative_path is None)
        or f.provenance is Provenance.FILE
    ]
    return descriptor.template.format(
        imports="\n".join(imports),
        definitions="\n\n".join(definitions),
        body=unit.code,
    )


def search_paths(unit: ResolvedUnit) -> List[Path]:
    """The selection's own directory, then the project root."""
    paths: List[Path] = []
    candidates = [f.origin.parent for f in unit.of(Provenance.SELECTION)]
    if unit.project_root is not None:
        candidates.append(unit.project_root)
    for candidate in candidates:
        resolved = Path(candidate).resolve()
        if resolved not in paths:
            paths.append(resolved)
    return paths


class WorkspaceManager:
    """Own and populate the shared work directory."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self.lock = threading.RLock()
        self.ensure()

    def ensure(self) -> Path:
        """Create the work directory if something removed it."""
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceIOFailed(f"Cannot create work directory {self.base_dir}: {exc}")
        return self.base_dir

    def language_dir(self, language: str) -> Path:
        return self.base_dir / language

    def save(self, language: str, relative_path: Path | str, content: str) -> Path:
        self.ensure()
        dest = self.language_dir(language) / relative_path
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise WorkspaceIOFailed(f"Cannot write {dest}: {exc}")
        return dest

    def list(self) -> List[str]:
        if not self.base_dir.exists():
            return []
        return sorted(
            str(p.relative_to(self.base_dir)) for p in self.base_dir.rglob("*") if p.is_file()
        )

    def is_empty(self) -> bool:
        return not self.base_dir.exists() or not any(self.base_dir.iterdir())

    def materialize(self, unit: ResolvedUnit) -> MaterializedUnit:
        descriptor = unit.descriptor
        with self.lock:
            main = self.save(descriptor.name, descriptor.main_file, render(unit))
            sources = [main]
            for fragment in unit.of(Provenance.PROJECT):
                if fragment.relative_path is not None:
                    sources.append(self.save(descriptor.name, fragment.relative_path, fragment.text))
            logger.debug("Materialized %d file(s) in %s", len(sources), main.parent)
            return MaterializedUnit(
                workdir=main.parent,
                main=main,
                sources=sources,
                libraries=list(unit.libraries),
                search_paths=search_paths(unit),
            )

    def clean(self) -> None:
        """Remove the work directory and recreate it empty."""
        with self.lock:
            try:
                shutil.rmtree(self.base_dir)
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise WorkspaceIOFailed(f"Cannot remove {self.base_dir}: {exc}")
            self.ensure()
            logger.info("Work directory %s cleaned", self.base_dir)
