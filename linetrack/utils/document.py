"""
In-memory DocumentPort.

Behaves like a block-based rich-text editor: the document is a list of lines, each
terminated by a newline that can never be deleted on the last line. Splitting a line
leaves the original block on the head and gives the tail a copy of its attributes;
joining two lines keeps the earlier block. Events are delivered synchronously:

    text-change(delta, old_delta, source)       after the content changed
    selection-change(range, old_range, source)  after text-change, when the caret moved
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import structlog

from linetrack.models import ContentDelta, DeleteOp, InsertOp, RetainOp, SelectionRange
from linetrack.tracking.ports import (
    IDENTIFIER_ATTR,
    INDEX_ATTR,
    SOURCE_API,
    SOURCE_SILENT,
    SOURCE_USER,
    LineHandle,
)

logger = structlog.get_logger(__name__)

# Embeds occupy one unit of length
EMBED_CHAR = "￼"


def _copy_attributes(attributes: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    return dict(attributes) if attributes is not None else None


def transform_position(delta: ContentDelta, index: int) -> int:
    """Moves a caret offset through a change: inserts at or before it push it right, deletes pull it left."""
    offset = 0
    for op in delta.ops:
        if offset > index:
            break
        if isinstance(op, DeleteOp):
            index -= min(op.delete, index - offset)
            continue
        if isinstance(op, InsertOp):
            index += op.length
        offset += op.length
    return index


class MemoryDocument:
    def __init__(self, text: Union[str, Sequence[str]] = "", pending_renders: int = 0):
        self._lines: List[LineHandle] = [LineHandle(text=t) for t in self._split(text)]
        self._selection: Optional[SelectionRange] = None
        self._handlers: Dict[str, List[Callable[..., Any]]] = {}
        # is_ready() reports False this many times, like an editor still mounting
        self.pending_renders = pending_renders

    @staticmethod
    def _split(text: Union[str, Sequence[str]]) -> List[str]:
        if not isinstance(text, str):
            return list(text) or [""]
        if text.endswith("\n"):
            text = text[:-1]
        return text.split("\n")

    # --- DocumentPort ---

    def lines(self) -> List[LineHandle]:
        return list(self._lines)

    def line_text(self, line: LineHandle) -> str:
        return line.text

    def line_start(self, line: LineHandle) -> int:
        offset = 0
        for candidate in self._lines:
            if candidate is line:
                return offset
            offset += len(candidate.text) + 1
        raise ValueError("Line does not belong to this document")

    def line_index_at(self, offset: int) -> int:
        start = 0
        for index, line in enumerate(self._lines):
            end = start + len(line.text)
            if offset <= end:
                return index
            start = end + 1
        return len(self._lines) - 1

    def length(self) -> int:
        return sum(len(line.text) + 1 for line in self._lines)

    def is_attached(self, line: LineHandle) -> bool:
        return line.attributes is not None

    def is_ready(self) -> bool:
        if self.pending_renders > 0:
            self.pending_renders -= 1
            return False
        return True

    def get_identifier(self, line: LineHandle) -> Optional[str]:
        if line.attributes is None:
            return None
        return line.attributes.get(IDENTIFIER_ATTR) or None

    def set_identifier(self, line: LineHandle, identifier: str) -> None:
        if line.attributes is not None:
            line.attributes[IDENTIFIER_ATTR] = identifier

    def clear_identifier(self, line: LineHandle) -> None:
        if line.attributes is not None:
            line.attributes.pop(IDENTIFIER_ATTR, None)

    def get_index(self, line: LineHandle) -> Optional[int]:
        if line.attributes is None or INDEX_ATTR not in line.attributes:
            return None
        return int(line.attributes[INDEX_ATTR])

    def set_index(self, line: LineHandle, index: int) -> None:
        if line.attributes is not None:
            line.attributes[INDEX_ATTR] = str(index)

    def get_selection(self) -> Optional[SelectionRange]:
        return self._selection

    def set_selection(self, index: int, length: int = 0, silent: bool = False) -> None:
        self._move_selection(index, length, SOURCE_SILENT if silent else SOURCE_API)

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    # --- Inspection ---

    @property
    def text(self) -> str:
        return "".join(line.text + "\n" for line in self._lines)

    def line_texts(self) -> List[str]:
        return [line.text for line in self._lines]

    def identifiers(self) -> List[Optional[str]]:
        return [self.get_identifier(line) for line in self._lines]

    def indices(self) -> List[Optional[int]]:
        return [self.get_index(line) for line in self._lines]

    def get_contents(self) -> ContentDelta:
        return ContentDelta(ops=[InsertOp(insert=self.text)])

    def detach_line(self, index: int) -> None:
        """Simulates a line whose node is not mounted (yet)."""
        self._lines[index].attributes = None

    # --- Editing ---

    def apply_delta(
        self,
        delta: Union[ContentDelta, Dict[str, Any], List[Any]],
        source: str = SOURCE_USER,
        selection_after: Optional[SelectionRange] = None,
    ) -> ContentDelta:
        delta = ContentDelta.from_payload(delta)
        old_contents = self.get_contents()

        position = 0
        for op in delta.ops:
            if isinstance(op, RetainOp):
                position += op.retain
            elif isinstance(op, InsertOp):
                text = op.insert if isinstance(op.insert, str) else EMBED_CHAR
                self._insert(position, text)
                position += len(text)
            elif isinstance(op, DeleteOp):
                self._delete(position, op.delete)

        old_selection = self._selection
        if selection_after is not None:
            self._selection = self._clamp(selection_after.index, selection_after.length)
        elif old_selection is not None:
            start = transform_position(delta, old_selection.index)
            end = transform_position(delta, old_selection.index + old_selection.length)
            self._selection = self._clamp(start, max(end - start, 0))

        self._emit("text-change", delta, old_contents, source)
        if source != SOURCE_SILENT and self._selection != old_selection:
            self._emit("selection-change", self._selection, old_selection, source)
        return delta

    def set_contents(self, text: Union[str, Sequence[str]], source: str = SOURCE_API) -> ContentDelta:
        """Replaces the whole document. Every line is a fresh block without attributes."""
        old_contents = self.get_contents()
        old_length = self.length()
        self._lines = [LineHandle(text=t) for t in self._split(text)]
        delta = ContentDelta(ops=[InsertOp(insert=self.text), DeleteOp(delete=old_length)])

        old_selection = self._selection
        if old_selection is not None:
            self._selection = self._clamp(old_selection.index, old_selection.length)
        self._emit("text-change", delta, old_contents, source)
        if source != SOURCE_SILENT and self._selection != old_selection:
            self._emit("selection-change", self._selection, old_selection, source)
        return delta

    def type_text(self, index: int, text: str, source: str = SOURCE_USER) -> ContentDelta:
        self._move_selection(index, 0, source)
        return self.apply_delta(
            self._delta(index, InsertOp(insert=text)),
            source,
            SelectionRange(index=index + len(text), length=0),
        )

    def press_enter(self, index: int, source: str = SOURCE_USER) -> ContentDelta:
        self._move_selection(index, 0, source)
        return self.apply_delta(
            self._delta(index, InsertOp(insert="\n")),
            source,
            SelectionRange(index=index + 1, length=0),
        )

    def press_backspace(self, index: int, source: str = SOURCE_USER) -> Optional[ContentDelta]:
        """Deletes the character before index. At the very start of the document nothing happens."""
        self._move_selection(index, 0, source)
        if index <= 0:
            return None
        return self.apply_delta(
            self._delta(index - 1, DeleteOp(delete=1)),
            source,
            SelectionRange(index=index - 1, length=0),
        )

    def delete_range(self, index: int, length: int, source: str = SOURCE_USER) -> ContentDelta:
        self._move_selection(index, length, source)
        return self.apply_delta(
            self._delta(index, DeleteOp(delete=length)),
            source,
            SelectionRange(index=index, length=0),
        )

    # --- Internals ---

    @staticmethod
    def _delta(index: int, op: Any) -> ContentDelta:
        ops: List[Any] = [RetainOp(retain=index)] if index > 0 else []
        ops.append(op)
        return ContentDelta(ops=ops)

    def _locate(self, offset: int):
        index = self.line_index_at(offset)
        return index, offset - self.line_start(self._lines[index])

    def _insert(self, offset: int, text: str) -> None:
        offset = min(max(offset, 0), self.length() - 1)
        index, column = self._locate(offset)
        line = self._lines[index]
        parts = text.split("\n")
        if len(parts) == 1:
            line.text = line.text[:column] + text + line.text[column:]
            return

        rest = line.text[column:]
        line.text = line.text[:column] + parts[0]
        created = [LineHandle(text=part, attributes=_copy_attributes(line.attributes)) for part in parts[1:]]
        created[-1].text += rest
        self._lines[index + 1 : index + 1] = created

    def _delete(self, offset: int, count: int) -> None:
        # The trailing newline of the document is not deletable
        end = min(offset + count, self.length() - 1)
        if end <= offset:
            return
        first, first_column = self._locate(offset)
        last, last_column = self._locate(end)
        head = self._lines[first]
        tail_text = self._lines[last].text[last_column:]
        head.text = head.text[:first_column] + tail_text
        del self._lines[first + 1 : last + 1]

    def _clamp(self, index: int, length: int = 0) -> SelectionRange:
        limit = max(self.length() - 1, 0)
        index = min(max(index, 0), limit)
        length = min(max(length, 0), limit - index)
        return SelectionRange(index=index, length=length)

    def _move_selection(self, index: int, length: int, source: str) -> None:
        old_selection = self._selection
        self._selection = self._clamp(index, length)
        if source != SOURCE_SILENT and self._selection != old_selection:
            self._emit("selection-change", self._selection, old_selection, source)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(*args)
