from typing import Dict, Iterable, List, Optional

import structlog

from linetrack.content import plain_text
from linetrack.models import LineRecord
from linetrack.tracking.ports import DocumentPort, LineHandle

logger = structlog.get_logger(__name__)


class IdentityStore:
    """
    In-memory identity maps for one editing session.

    - position_to_identifier: 0-based line index -> identifier, rebuilt after every structural change.
    - content_to_identifier: line text -> identifier, a fallback hint that survives edits.
      Only non-blank text is stored; last writer wins.
    - identifier_to_last_content: identifier -> last text seen, to spot lines that moved
      while keeping their text.
    """

    def __init__(self):
        self.position_to_identifier: Dict[int, str] = {}
        self.content_to_identifier: Dict[str, str] = {}
        self.identifier_to_last_content: Dict[str, str] = {}

    def set_line_identifier(self, position: int, identifier: str) -> None:
        self.position_to_identifier[position] = identifier

    def get_line_identifier(self, position: int) -> Optional[str]:
        return self.position_to_identifier.get(position)

    def map_content(self, text: str, identifier: str) -> None:
        if text and text.strip():
            self.content_to_identifier[text] = identifier

    def identifier_for_content(self, text: str) -> Optional[str]:
        if not text or not text.strip():
            return None
        return self.content_to_identifier.get(text)

    def track_content_history(self, identifier: str, text: str) -> None:
        if text and text.strip():
            self.identifier_to_last_content[identifier] = text

    def has_content_changed(self, identifier: str, text: str) -> bool:
        return self.identifier_to_last_content.get(identifier) != text

    def seed(self, records: Iterable[LineRecord]) -> None:
        """Primes the content and position maps from persisted records."""
        for index, record in enumerate(records):
            text = plain_text(record.content)
            self.position_to_identifier[index] = record.identifier
            self.map_content(text, record.identifier)
            self.track_content_history(record.identifier, text)

    def rebuild(self, document: DocumentPort) -> None:
        """Re-reads every attached line of the document into the maps."""
        self.position_to_identifier.clear()
        for index, line in enumerate(document.lines()):
            if not document.is_attached(line):
                continue
            identifier = document.get_identifier(line)
            if not identifier:
                continue
            self.position_to_identifier[index] = identifier
            text = document.line_text(line)
            if text.strip():
                # The content hint only moves when the line's text actually changed
                if self.has_content_changed(identifier, text):
                    self.map_content(text, identifier)
                self.track_content_history(identifier, text)

    def clear(self) -> None:
        self.position_to_identifier.clear()
        self.content_to_identifier.clear()
        self.identifier_to_last_content.clear()


class LineContentCache:
    """Text of each line as of the last completed render, used to tell new lines from old ones."""

    def __init__(self):
        self._contents: Dict[int, str] = {}

    def cache_line_contents(self, document: DocumentPort) -> None:
        self._contents = {index: document.line_text(line) for index, line in enumerate(document.lines())}

    def get_cached_content(self, index: int) -> Optional[str]:
        return self._contents.get(index)

    def contains_text(self, text: str) -> bool:
        return text in self._contents.values()

    def has_duplicate_identifier(self, document: DocumentPort, line: LineHandle, lines: List[LineHandle]) -> bool:
        identifier = document.get_identifier(line)
        if not identifier:
            return False
        count = sum(1 for other in lines if document.get_identifier(other) == identifier)
        return count > 1

    def clear(self) -> None:
        self._contents.clear()

    def __len__(self) -> int:
        return len(self._contents)
