"""Project-root detection and bounded discovery of project files and libraries."""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset(
    {"node_modules", "__pycache__", "venv", "env", "target", "build", "dist", "vendor", "site-packages"}
)


def find_project_root(start: Path, markers: Sequence[str], max_depth: int) -> Optional[Path]:
    """Walk upward from ``start`` until a directory holds one of ``markers``."""
    current = start.resolve()
    for _ in range(max_depth + 1):
        for marker in markers:
            if (current / marker).exists():
                return current
        if current.parent == current:
            break
        current = current.parent
    return None


def iter_project_files(
    root: Path,
    extension: str,
    max_depth: int,
    max_files: int,
    exclude: Optional[Path] = None,
) -> List[Path]:
    """Source files under ``root``, breadth-first with sorted siblings.

    The order is the discovery order used for tie-breaking, so it must
    not depend on filesystem iteration order.
    """
    excluded = exclude.resolve() if exclude is not None else None
    found: List[Path] = []
    queue = deque([(root, 0)])
    while queue and len(found) < max_files:
        directory, depth = queue.popleft()
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            logger.debug("Skipping unreadable directory %s: %s", directory, exc)
            continue
        subdirs = []
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                if entry.name not in SKIP_DIRS and depth < max_depth:
                    subdirs.append(entry)
            elif entry.suffix == extension and entry.resolve() != excluded:
                found.append(entry)
                if len(found) >= max_files:
                    break
        queue.extend((d, depth + 1) for d in subdirs)
    return found


def find_libraries(
    root: Optional[Path],
    globs: Sequence[str],
    system_dirs: Iterable[Path],
    limit: int,
) -> List[Path]:
    """Library artifacts reachable from the project root, then system paths."""
    libraries: List[Path] = []
    seen = set()

    def _add(paths: Iterable[Path]) -> None:
        for path in sorted(paths):
            resolved = path.resolve()
            if resolved in seen or not path.is_file():
                continue
            seen.add(resolved)
            libraries.append(resolved)

    if root is not None:
        for pattern in globs:
            _add(root.glob(pattern))
    suffixes = {Path(pattern).suffix for pattern in globs if Path(pattern).suffix}
    for directory in system_dirs:
        if not directory.is_dir():
            continue
        _add(p for p in directory.iterdir() if p.suffix in suffixes)
    return libraries[:limit]
