from typing import Any, Optional

import structlog

from linetrack.models import ContentDelta, CursorPosition, SelectionRange, TrackedOperation
from linetrack.tracking.ports import DocumentPort
from linetrack.tracking.store import LineContentCache

logger = structlog.get_logger(__name__)


class CursorTracker:
    """
    Follows the caret between edits so keystroke-level operations can be recognised
    after the fact, and snapshots the selection around identifier repairs.
    """

    def __init__(self, document: DocumentPort):
        self.document = document
        self.last_position: Optional[CursorPosition] = None
        self.last_operation: Optional[TrackedOperation] = None
        self._saved: Optional[SelectionRange] = None

    def track(self, selection: Optional[SelectionRange]) -> Optional[CursorPosition]:
        # A lost focus (None) keeps the last known position
        if selection is None:
            return self.last_position
        lines = self.document.lines()
        line_index = self.document.line_index_at(selection.index)
        column = 0
        if 0 <= line_index < len(lines):
            column = selection.index - self.document.line_start(lines[line_index])
        self.last_position = CursorPosition(
            index=selection.index,
            line_index=line_index,
            length=selection.length,
            column=column,
        )
        return self.last_position

    def handle_selection_change(self, selection: Optional[SelectionRange], old_selection: Any = None, source: str = "user") -> None:
        self.track(selection)

    def save(self) -> Optional[SelectionRange]:
        selection = self.document.get_selection()
        if selection is not None:
            self._saved = SelectionRange(index=selection.index, length=selection.length)
        return self._saved

    def restore(self, silent: bool = True) -> Optional[SelectionRange]:
        """Re-applies the saved selection, clamped to the current document length."""
        if self._saved is None:
            return None
        doc_length = self.document.length()
        index, length = self._saved.index, self._saved.length
        if index >= doc_length:
            index, length = max(doc_length - 1, 0), 0
        elif index + length > doc_length:
            length = doc_length - index
        self.document.set_selection(index, length, silent=silent)
        return SelectionRange(index=index, length=length)

    def analyze_text_change(self, delta: ContentDelta, content_cache: Optional[LineContentCache] = None) -> Optional[TrackedOperation]:
        """
        Records an enter-at-position-0 operation when the change inserted a bare newline
        while the caret sat at the start of a line. The moved text is read from the line
        that now sits below the caret line, falling back to the cached pre-edit text.
        """
        self.reset_operation()
        position = self.last_position
        if position is None or position.column != 0:
            return None
        if not any(op.insert == "\n" for op in delta.inserts()):
            return None

        line_index = position.line_index
        lines = self.document.lines()
        moved = ""
        if line_index + 1 < len(lines):
            moved = self.document.line_text(lines[line_index + 1])
        if not moved and content_cache is not None:
            moved = content_cache.get_cached_content(line_index) or ""

        self.last_operation = TrackedOperation(line_index=line_index, moved_content=moved.strip())
        logger.debug(f"Enter at column 0 of line {line_index + 1}, moved content {self.last_operation.moved_content!r}")
        return self.last_operation

    def reset_operation(self) -> None:
        self.last_operation = None

    def consume_operation(self) -> Optional[TrackedOperation]:
        operation = self.last_operation
        self.last_operation = None
        return operation
