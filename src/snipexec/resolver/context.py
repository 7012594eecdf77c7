"""Context resolution: how much of the surrounding code a selection needs.

Each support level adds one step on top of the level below it:

* ``LINE``    the first selected line only
* ``BLOC``    the whole selection, dedented
* ``IMPORT``  plus the file's leading import statements
* ``FILE``    plus referenced top-level definitions of the same file
* ``PROJECT`` plus definitions found in other files of the project
* ``SYSTEM``  plus library artifacts added to the run-time classpath

Nothing here fails because a symbol is missing.  Misses are recorded on
the unit and logged; the compiler or interpreter reports them for real.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Set

from ..config import Config
from ..errors import InvalidRequest, ResolutionIncomplete
from ..registry import LanguageDescriptor, SupportLevel
from .project import find_libraries, find_project_root, iter_project_files
from .source import Definition, SourceFile, identifiers, pick
from .unit import ExecutionRequest, Fragment, Provenance, ResolvedUnit

logger = logging.getLogger(__name__)


class ContextResolver:
    """Turn an :class:`ExecutionRequest` into a :class:`ResolvedUnit`."""

    def __init__(self, config: Optional[Config] = None) -> None:
        self.root_search_depth = config.root_search_depth if config else 10
        self.project_max_depth = config.project_max_depth if config else 6
        self.project_max_files = config.project_max_files if config else 200
        self.library_paths: List[Path] = list(config.library_paths) if config else []

    def resolve(
        self,
        request: ExecutionRequest,
        descriptor: LanguageDescriptor,
        level: SupportLevel,
    ) -> ResolvedUnit:
        level = min(level, descriptor.level)
        if request.first_line < 1 or request.last_line < request.first_line:
            raise InvalidRequest(
                f"Invalid line range {request.first_line}-{request.last_line}"
            )

        source = SourceFile.read(request.source_path, descriptor)
        first = request.first_line
        last = min(request.last_line, len(source))
        if first > len(source):
            raise InvalidRequest(
                f"Line {first} is past the end of {source.path} ({len(source)} lines)"
            )

        unit = ResolvedUnit(descriptor=descriptor, level=level)

        if level <= SupportLevel.LINE:
            if last > first:
                unit.misses.append(ResolutionIncomplete(f"lines {first + 1}-{last}", level.name))
            selection = source.range_text(first, first).strip()
            unit.fragments.append(Fragment(selection, Provenance.SELECTION, source.path, first))
            return unit

        selection = source.range_text(first, last)
        selected = Fragment(selection, Provenance.SELECTION, source.path, first)

        imports: List[Fragment] = []
        file_defs: List[Definition] = []
        project_frags: List[Fragment] = []

        if level >= SupportLevel.IMPORT:
            imports.extend(source.imports(first, last))

        if level >= SupportLevel.FILE:
            wanted = identifiers(selection, descriptor.block_style) - source.defined_names(selection)
            unresolved = self._resolve_in_file(source, first, last, wanted, file_defs)

            if level >= SupportLevel.PROJECT:
                unit.project_root = find_project_root(
                    source.path.parent, descriptor.project_markers, self.root_search_depth
                )
                if unit.project_root is None:
                    logger.debug("No project root above %s", source.path)
                else:
                    unresolved = self._resolve_in_project(
                        source, first, last, unit.project_root, unresolved,
                        file_defs, project_frags, imports,
                    )

            for name in sorted(unresolved):
                unit.misses.append(ResolutionIncomplete(name, level.name))

        if level >= SupportLevel.SYSTEM:
            system_dirs = [Path(d) for d in descriptor.system_library_dirs] + self.library_paths
            unit.libraries = find_libraries(
                unit.project_root, descriptor.library_globs, system_dirs, self.project_max_files
            )

        unit.fragments.extend(_dedupe(imports))
        unit.fragments.extend(project_frags)
        unit.fragments.extend(
            Fragment(d.text, Provenance.FILE, source.path, d.start)
            for d in sorted(file_defs, key=lambda d: d.start)
        )
        unit.fragments.append(selected)

        if unit.misses:
            logger.debug(
                "Unresolved in %s: %s", source.path, ", ".join(m.symbol for m in unit.misses)
            )
        return unit

    def _resolve_in_file(
        self,
        source: SourceFile,
        first: int,
        last: int,
        wanted: Set[str],
        chosen: List[Definition],
    ) -> Set[str]:
        """Pull definitions of ``wanted`` from ``source``, transitively.

        Returns the names that were not found.
        """
        table = source.index(first, last)
        pending = sorted(wanted)
        done: Set[str] = set()
        missing: Set[str] = set()
        while pending:
            name = pending.pop(0)
            if name in done:
                continue
            done.add(name)
            candidates = table.get(name)
            if not candidates:
                missing.add(name)
                continue
            definition = pick(candidates, first)
            if definition in chosen:
                continue
            chosen.append(definition)
            refs = identifiers(definition.text, source.descriptor.block_style) - {name}
            pending.extend(sorted(refs - done))
        return missing

    def _resolve_in_project(
        self,
        source: SourceFile,
        first: int,
        last: int,
        root: Path,
        wanted: Set[str],
        file_defs: List[Definition],
        project_frags: List[Fragment],
        imports: List[Fragment],
    ) -> Set[str]:
        descriptor = source.descriptor
        files = iter_project_files(
            root,
            descriptor.extension,
            self.project_max_depth,
            self.project_max_files,
            exclude=source.path,
        )
        loaded: Dict[Path, SourceFile] = {}
        local = source.index(first, last)
        mirrored: Set[Path] = set()

        def _load(path: Path) -> Optional[SourceFile]:
            if path not in loaded:
                try:
                    loaded[path] = SourceFile.read(path, descriptor)
                except Exception as exc:
                    logger.debug("Skipping project file %s: %s", path, exc)
                    return None
            return loaded[path]

        pending = sorted(wanted)
        done: Set[str] = set()
        missing: Set[str] = set()
        while pending:
            name = pending.pop(0)
            if name in done:
                continue
            done.add(name)

            # The current file always wins over the project.
            if name in local:
                rest = self._resolve_in_file(source, first, last, {name}, file_defs)
                pending.extend(sorted(rest - done))
                continue

            hit = None
            for path in files:
                project_file = _load(path)
                if project_file is None:
                    continue
                candidates = project_file.index().get(name)
                if candidates:
                    hit = (project_file, candidates[0])
                    break
            if hit is None:
                missing.add(name)
                continue

            project_file, definition = hit
            if descriptor.project_layout == "mirror":
                if project_file.path in mirrored:
                    continue
                mirrored.add(project_file.path)
                project_frags.append(
                    Fragment(
                        project_file.text,
                        Provenance.PROJECT,
                        project_file.path,
                        1,
                        relative_path=project_file.path.relative_to(root),
                    )
                )
                done.update(d.name for d in project_file.definitions)
                refs = identifiers(project_file.text, descriptor.block_style)
            else:
                project_frags.append(
                    Fragment(definition.text, Provenance.PROJECT, project_file.path, definition.start)
                )
                imports.extend(project_file.imports(0, -1))
                refs = identifiers(definition.text, descriptor.block_style) - {name}
            pending.extend(sorted(refs - done))

        order = {path: i for i, path in enumerate(files)}
        project_frags.sort(key=lambda f: (order.get(f.origin, len(order)), f.line))
        return missing


def _dedupe(fragments: List[Fragment]) -> List[Fragment]:
    seen: Set[str] = set()
    unique: List[Fragment] = []
    for fragment in fragments:
        key = fragment.text.strip()
        if key in seen:
            continue
        seen.add(key)
        unique.append(fragment)
    return unique
