"""Line-oriented scanning of one source file.

Recognition is regular-expression based and deliberately shallow: it
finds column-0 imports and top-level definitions well enough for the
common layouts, and anything it misses is left for the toolchain to
report.
"""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..errors import SourceUnavailable
from ..registry import LanguageDescriptor
from .unit import Fragment, Provenance

_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\])*\'')
_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_OPENERS = "([{"
_CLOSERS = ")]}"


def strip_literals(line: str, block_style: str) -> str:
    """Blank out string literals and trailing comments."""
    line = _STRING_RE.sub('""', line)
    marker = "#" if block_style == "indent" else "//"
    cut = line.find(marker)
    if cut >= 0:
        line = line[:cut]
    return line


def identifiers(text: str, block_style: str) -> Set[str]:
    found: Set[str] = set()
    for line in text.splitlines():
        found.update(_IDENT_RE.findall(strip_literals(line, block_style)))
    return found


def _depth_delta(line: str) -> int:
    return sum(line.count(c) for c in _OPENERS) - sum(line.count(c) for c in _CLOSERS)


@dataclass(frozen=True)
class Definition:
    name: str
    start: int  # 1-indexed, inclusive
    end: int
    text: str

    def overlaps(self, first: int, last: int) -> bool:
        return self.start <= last and first <= self.end


class SourceFile:
    """A saved file on disk, scanned with one language's rules."""

    def __init__(self, path: Path, text: str, descriptor: LanguageDescriptor) -> None:
        self.path = path
        self.descriptor = descriptor
        self.lines: List[str] = text.splitlines()
        self._imports = [re.compile(p) for p in descriptor.import_patterns]
        self._definitions = [re.compile(p) for p in descriptor.definition_patterns]

    @classmethod
    def read(cls, path: Path, descriptor: LanguageDescriptor) -> "SourceFile":
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            raise SourceUnavailable(f"File not found: {path} (save the buffer before running)")
        except OSError as exc:
            raise SourceUnavailable(f"Cannot read {path}: {exc}")
        return cls(path, text, descriptor)

    def __len__(self) -> int:
        return len(self.lines)

    @property
    def text(self) -> str:
        return "\n".join(self.lines) + "\n"

    def range_text(self, first: int, last: int, dedent: bool = True) -> str:
        text = "\n".join(self.lines[first - 1 : last])
        return textwrap.dedent(text) if dedent else text

    def is_import(self, line: str) -> bool:
        return any(p.match(line) for p in self._imports)

    def definition_name(self, line: str) -> Optional[str]:
        for pattern in self._definitions:
            match = pattern.match(line)
            if match:
                return match.group("name")
        return None

    def defined_names(self, text: str) -> Set[str]:
        """Names a piece of code defines, at any indentation."""
        names: Set[str] = set()
        for line in text.splitlines():
            name = self.definition_name(line.lstrip())
            if name:
                names.add(name)
        return names

    # -- imports ---------------------------------------------------------

    def imports(self, first: int, last: int) -> List[Fragment]:
        """Import statements of the leading region outside ``first..last``.

        The leading region runs to the first top-level definition, or up
        to the selection for languages without definition patterns.
        """
        if not self._imports:
            return []
        found: List[Fragment] = []
        i = 0
        while i < len(self.lines):
            lineno = i + 1
            line = self.lines[i]
            if self._definitions:
                if not self.is_import(line) and self.definition_name(line):
                    break
            elif lineno >= first:
                break
            if not self.is_import(line):
                i += 1
                continue
            end = self._statement_end(i)
            if not (first <= lineno <= last):
                text = "\n".join(self.lines[i : end + 1])
                found.append(Fragment(text, Provenance.IMPORT, self.path, lineno))
            i = end + 1
        return found

    def _statement_end(self, i: int) -> int:
        depth = 0
        j = i
        while j < len(self.lines):
            stripped = strip_literals(self.lines[j], self.descriptor.block_style)
            depth += _depth_delta(stripped)
            if depth <= 0 and not stripped.rstrip().endswith("\\"):
                return j
            j += 1
        return len(self.lines) - 1

    # -- definitions -----------------------------------------------------

    @cached_property
    def definitions(self) -> List[Definition]:
        result: List[Definition] = []
        i = 0
        while i < len(self.lines):
            line = self.lines[i]
            name = self.definition_name(line)
            if name is None or self.is_import(line):
                i += 1
                continue
            start = i
            if self.descriptor.block_style == "indent":
                while start > 0 and self.lines[start - 1].startswith("@"):
                    start -= 1
                end = self._indent_block_end(i)
            else:
                end = self._brace_block_end(i)
            text = "\n".join(self.lines[start : end + 1])
            result.append(Definition(name, start + 1, end + 1, text))
            i = end + 1
        return result

    def _indent_block_end(self, i: int) -> int:
        depth = _depth_delta(strip_literals(self.lines[i], "indent"))
        end = i
        j = i + 1
        while j < len(self.lines):
            line = self.lines[j]
            if line.strip():
                if depth <= 0 and not line[0].isspace() and line[0] not in _CLOSERS:
                    break
                depth += _depth_delta(strip_literals(line, "indent"))
                end = j
            j += 1
        return end

    def _brace_block_end(self, i: int) -> int:
        depth = 0
        opened = False
        j = i
        while j < len(self.lines):
            raw = self.lines[j]
            line = strip_literals(raw, "braces")
            if not opened and j > i:
                if not line.strip() or (not raw[0].isspace() and self.definition_name(raw)):
                    return j - 1
            opens = line.count("{")
            depth += opens - line.count("}")
            opened = opened or opens > 0
            if opened and depth <= 0:
                return j
            if not opened and line.rstrip().endswith(";"):
                return j
            j += 1
        return len(self.lines) - 1

    def index(self, first: int = 0, last: int = -1) -> Dict[str, List[Definition]]:
        """Definitions by name, skipping those overlapping ``first..last``."""
        table: Dict[str, List[Definition]] = {}
        for definition in self.definitions:
            if definition.overlaps(first, last):
                continue
            table.setdefault(definition.name, []).append(definition)
        return table


def pick(candidates: Iterable[Definition], before: int) -> Definition:
    """Closest definition preceding line ``before``, else the first after it."""
    ordered: Tuple[Definition, ...] = tuple(candidates)
    preceding = [d for d in ordered if d.end < before]
    return preceding[-1] if preceding else ordered[0]
