"""Context store: what the model has been shown.

The store is the allowlist for edits. A file can only be edited after it has
been added here, and the snapshot taken at that moment is never refreshed
behind the operator's back. Execution results, snippets and notes are kept
alongside so the model can react to them on its next turn.
"""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path

from agentgate.core import ContextEntry, ContextRecord, ExecutionResult
from agentgate.errors import NotFound, ReadError
from agentgate.operator import OperatorChannel

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 20


class ContextStore:
    """Files, snippets and results visible to the model.

    The store is single-owner. Callers that share it between threads must
    serialize access themselves (the MCP runtime does this with its lock).
    """

    def __init__(
        self,
        root: Path | str | None = None,
        operator: OperatorChannel | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ):
        """Create an empty store.

        Args:
            root: Directory relative paths are resolved against. Defaults to cwd.
            operator: Channel used to acknowledge every added file.
            max_results: How many execution results to keep; older ones are evicted.
        """
        self.root = Path(root or Path.cwd()).expanduser().resolve()
        self.operator = operator or OperatorChannel()
        self._entries: dict[Path, ContextEntry] = {}
        self._snippets: list[ContextRecord] = []
        self._results: deque[ContextRecord] = deque(maxlen=max_results)

    def resolve(self, path: str | Path) -> Path:
        """Resolve a path the way every store lookup does."""
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate
        return candidate.resolve()

    def add(self, path: str | Path) -> ContextEntry:
        """Add a file to the context, replacing any earlier snapshot.

        Raises:
            NotFound: If the path does not exist or is not a regular file.
            ReadError: If the file could not be read.
        """
        resolved = self.resolve(path)
        if not resolved.is_file():
            raise NotFound(f"File not found: {path}")
        try:
            content = resolved.read_bytes()
        except OSError as exc:
            raise ReadError(f"Failed to read file '{path}': {exc}") from exc

        entry = ContextEntry(path=resolved, content=content)
        replaced = resolved in self._entries
        self._entries[resolved] = entry
        logger.info("context add path=%s bytes=%s replaced=%s", resolved, len(content), replaced)
        self.operator.say(f"Added file '{self.display_path(resolved)}' to context.")
        return entry

    def contains(self, path: str | Path) -> bool:
        """Return True if the file has been added to the context."""
        return self.resolve(path) in self._entries

    def add_snippet(self, text: str) -> ContextRecord:
        """Add a free-form text snippet. Snippets are never evicted."""
        record = ContextRecord(kind="snippet", text=text)
        self._snippets.append(record)
        self.operator.say("Added snippet to context.")
        return record

    def record(self, result: ExecutionResult) -> ContextRecord:
        """Append an execution result so the model can observe it."""
        record = ContextRecord(kind="result", text=result.as_context())
        self._results.append(record)
        logger.debug("context record command=%s exit_code=%s", result.command, result.exit_code)
        return record

    def note(self, text: str) -> ContextRecord:
        """Append a pipeline message (denials, failures) for the model."""
        record = ContextRecord(kind="note", text=text)
        self._results.append(record)
        return record

    def clear(self) -> None:
        """Forget everything, including the edit allowlist."""
        self._entries.clear()
        self._snippets.clear()
        self._results.clear()
        self.operator.say("Context cleared.")

    @property
    def files(self) -> list[Path]:
        return list(self._entries)

    @property
    def records(self) -> list[ContextRecord]:
        return self._snippets + list(self._results)

    def display_path(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)

    def show(self) -> str:
        """Operator-facing listing of the context."""
        if not self._entries and not self.records:
            return "Context is empty."
        lines = ["--- Current Context ---"]
        for i, entry in enumerate(self._entries.values(), 1):
            lines.append(f"[File {i}] {self.display_path(entry.path)} ({len(entry.content)} bytes)")
        for i, record in enumerate(self.records, 1):
            first_line = record.text.splitlines()[0] if record.text else ""
            lines.append(f"[{record.kind.title()} {i}] {first_line}")
        lines.append("--- End Context ---")
        return "\n".join(lines)

    def format_for_model(self) -> str:
        """Render the whole context as the text block sent to the model."""
        if not self._entries and not self.records:
            return ""
        parts = ["Relevant context:"]
        for entry in self._entries.values():
            name = self.display_path(entry.path)
            parts.append(f"--- File: {name} ---\n{entry.text()}\n--- End File: {name} ---")
        for record in self.records:
            label = record.kind.title()
            parts.append(f"--- {label} ---\n{record.text}\n--- End {label} ---")
        return "\n\n".join(parts) + "\n"
