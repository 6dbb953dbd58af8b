"""Search/replace edit blocks: parsing and context-gated application.

Wire format, as embedded in a model response:

    path/to/file.py
    <<<<<<< SEARCH
    exact text to find
    =======
    replacement text
    >>>>>>> REPLACE

Markers are matched after stripping surrounding whitespace. Everything
between them is taken literally, including indentation and blank lines.
"""

from __future__ import annotations

import difflib
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from agentgate.context import ContextStore
from agentgate.core import EditBlock
from agentgate.errors import AccessDenied, MatchFailure, ParseError, ReadError, WriteError

logger = logging.getLogger(__name__)

SEARCH_MARKER = "<<<<<<< SEARCH"
SEPARATOR_MARKER = "======="
REPLACE_MARKER = ">>>>>>> REPLACE"


@dataclass
class ParsedEdits:
    """Blocks found in a response, plus the ones that had to be dropped."""

    blocks: list[EditBlock] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    spans: list[tuple[int, int]] = field(default_factory=list)
    """Line ranges [start, end) covered by the parsed blocks."""


def split_lines(text: str) -> list[str]:
    """Split like a line reader: no trailing empty line, CRLF tolerated."""
    if not text:
        return []
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def _is_header(lines: list[str], i: int) -> bool:
    return i + 1 < len(lines) and lines[i + 1].strip() == SEARCH_MARKER


def parse_edit_blocks(response: str, response_id: str = "") -> ParsedEdits:
    """Extract every well-formed edit block from a response.

    A block missing its separator or end marker is dropped with a ParseError
    and scanning resumes at the point where the block was found to be broken,
    so later blocks in the same response still parse.
    """
    parsed = ParsedEdits()
    lines = split_lines(response)
    i = 0

    while i < len(lines):
        if not _is_header(lines, i):
            i += 1
            continue

        start = i
        path = lines[i].strip()
        i += 2

        search_lines: list[str] = []
        found_separator = False
        while i < len(lines):
            marker = lines[i].strip()
            if marker.startswith(SEPARATOR_MARKER) and set(marker) == {"="}:
                found_separator = True
                i += 1
                break
            if marker in (REPLACE_MARKER, SEARCH_MARKER):
                break
            search_lines.append(lines[i])
            i += 1

        if not found_separator:
            parsed.errors.append(ParseError(f"Malformed edit block: missing separator for file {path}"))
            if i < len(lines) and lines[i].strip() == SEARCH_MARKER:
                i -= 1
            continue

        replace_lines: list[str] = []
        found_end = False
        while i < len(lines):
            marker = lines[i].strip()
            if marker == REPLACE_MARKER:
                found_end = True
                i += 1
                break
            if marker == SEARCH_MARKER:
                break
            replace_lines.append(lines[i])
            i += 1

        if not found_end:
            parsed.errors.append(ParseError(f"Malformed edit block: missing {REPLACE_MARKER} for file {path}"))
            if i < len(lines):
                # The line before the marker belongs to the next block's header.
                i -= 1
            continue

        parsed.blocks.append(
            EditBlock(
                path=path,
                search="\n".join(search_lines),
                replace="\n".join(replace_lines),
                response_id=response_id,
            )
        )
        parsed.spans.append((start, i))

    logger.debug("edit parse blocks=%s errors=%s", len(parsed.blocks), len(parsed.errors))
    return parsed


def count_occurrences(data: bytes, needle: bytes) -> int:
    """Count matches, stopping at two. Overlapping matches count separately."""
    first = data.find(needle)
    if first == -1:
        return 0
    second = data.find(needle, first + 1)
    return 1 if second == -1 else 2


@dataclass
class PreparedEdit:
    """An edit that passed every check and is waiting for approval."""

    block: EditBlock
    path: Path
    original: bytes
    updated: bytes

    @property
    def changed(self) -> bool:
        return self.updated != self.original

    def diff(self, display_path: str | None = None) -> str:
        """Unified diff of the pending change."""
        name = display_path or str(self.path)
        before = self.original.decode("utf-8", errors="replace").splitlines(keepends=True)
        after = self.updated.decode("utf-8", errors="replace").splitlines(keepends=True)
        diff = difflib.unified_diff(before, after, fromfile=f"a/{name}", tofile=f"b/{name}")
        return "".join(diff) or "(no changes)"


class EditApplier:
    """Validate edit blocks against the context and write them atomically."""

    def __init__(self, context: ContextStore):
        self.context = context

    def prepare(self, block: EditBlock) -> PreparedEdit:
        """Run every check that does not need the operator.

        Raises:
            AccessDenied: If the file was never added to the context.
            ReadError: If the file can no longer be read.
            MatchFailure: If the search text is not on disk exactly once.
        """
        if not self.context.contains(block.path):
            logger.info("edit denied path=%s reason=not-in-context", block.path)
            raise AccessDenied(block.path)

        path = self.context.resolve(block.path)
        current = self._read(path, block.path)

        search = block.search.encode("utf-8")
        occurrences = count_occurrences(current, search)
        if occurrences != 1:
            logger.info("edit match failure path=%s occurrences=%s", path, occurrences)
            raise MatchFailure(block.path, occurrences)

        updated = current.replace(search, block.replace.encode("utf-8"), 1)
        return PreparedEdit(block=block, path=path, original=current, updated=updated)

    def write(self, prepared: PreparedEdit) -> None:
        """Write an approved edit with a single atomic replace.

        Raises:
            WriteError: If the file changed while waiting for approval or the
                write itself failed.
        """
        current = self._read(prepared.path, prepared.block.path)
        if current != prepared.original:
            raise WriteError(f"'{prepared.block.path}' changed on disk while awaiting approval")

        try:
            atomic_write(prepared.path, prepared.updated)
        except OSError as exc:
            raise WriteError(f"Failed to write file '{prepared.block.path}': {exc}") from exc
        logger.info("edit applied path=%s bytes=%s", prepared.path, len(prepared.updated))

    def _read(self, path: Path, label: str) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ReadError(f"Failed to read file '{label}': {exc}") from exc


def atomic_write(path: Path, data: bytes) -> None:
    """Replace a file's content in one rename, keeping its permissions."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
