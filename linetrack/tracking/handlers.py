from typing import Dict, Optional

import structlog

from linetrack.models import CursorPosition, IdentifierFactory, new_identifier
from linetrack.tracking.ports import DocumentPort
from linetrack.tracking.store import LineContentCache

logger = structlog.get_logger(__name__)


def refresh_index_attributes(document: DocumentPort) -> None:
    """Rewrites the 1-based index attribute of every attached line."""
    for index, line in enumerate(document.lines()):
        if document.is_attached(line):
            document.set_index(line, index + 1)


class OperationHandlers:
    """
    Identifier assignment for each kind of structural operation.
    Handlers act on the document right after the engine applied the edit.
    """

    def __init__(self, document: DocumentPort, id_factory: IdentifierFactory = new_identifier):
        self.document = document
        self.id_factory = id_factory

    def assign_new_identifier(self, index: int) -> Optional[str]:
        lines = self.document.lines()
        if index < 0 or index >= len(lines):
            return None
        line = lines[index]
        if not self.document.is_attached(line):
            logger.debug(f"Line {index + 1} has no mounted node, skipping")
            return None
        identifier = self.id_factory()
        self.document.clear_identifier(line)
        self.document.set_identifier(line, identifier)
        self.document.set_index(line, index + 1)
        return identifier

    def split(self, index: int) -> Optional[str]:
        """The line at index keeps its identifier, the line produced below it gets a fresh one."""
        identifier = self.assign_new_identifier(index + 1)
        if identifier:
            logger.debug(f"Split at line {index + 1}: line {index + 2} -> {identifier}")
        refresh_index_attributes(self.document)
        return identifier

    def new_lines(self, start_index: int, last_line_count: int, content_cache: LineContentCache) -> int:
        """
        Gives fresh identifiers to lines created by a multi-line insert: lines past the old
        line count, lines whose text did not exist before the change, and lines sharing
        their identifier with another line.
        """
        lines = self.document.lines()
        assigned = 0
        for index in range(max(0, start_index), len(lines)):
            line = lines[index]
            if not self.document.is_attached(line):
                continue
            text = self.document.line_text(line)
            if (
                index >= last_line_count
                or not content_cache.contains_text(text)
                or content_cache.has_duplicate_identifier(self.document, line, lines)
            ):
                if self.assign_new_identifier(index):
                    assigned += 1
        logger.debug(f"New lines from line {max(0, start_index) + 1}: {assigned} identifiers assigned")
        refresh_index_attributes(self.document)
        return assigned

    def enter_at_zero(self, index: int = 0) -> Optional[str]:
        """
        Enter at column 0: the blank line left at index (the first line unless given) gets a
        fresh identifier while the pushed-down text keeps the block's own.
        """
        identifier = self.assign_new_identifier(index)
        refresh_index_attributes(self.document)
        return identifier

    def delete_merge(self, cursor_before: Optional[CursorPosition], previous_positions: Dict[int, str]) -> bool:
        """
        Nothing is regenerated on delete or merge. When the edit was a Backspace at the start
        of line L, line L-1 absorbed it and must still carry its own pre-merge identifier.
        Returns True if drift was corrected.
        """
        refresh_index_attributes(self.document)
        if cursor_before is None or cursor_before.column != 0 or cursor_before.length != 0:
            return False
        target = cursor_before.line_index - 1
        if target < 0:
            return False

        expected = previous_positions.get(target)
        lines = self.document.lines()
        if not expected or target >= len(lines):
            return False
        line = lines[target]
        if not self.document.is_attached(line):
            return False

        current = self.document.get_identifier(line)
        if current == expected:
            return False
        logger.info(f"Merge into line {target + 1} left identifier {current}, restoring {expected}")
        self.document.set_identifier(line, expected)
        self.document.set_index(line, target + 1)
        return True
