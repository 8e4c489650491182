from typing import Callable, Dict, Optional, Set

import structlog

from linetrack.content import content_hash
from linetrack.models import IdentifierFactory, RestoreReport, new_identifier
from linetrack.tracking.ports import DocumentPort

logger = structlog.get_logger(__name__)

PositionLookup = Callable[[int], Optional[str]]


class IdentityPreservationService:
    """
    Snapshots line identifiers around a mutation and puts them back afterwards,
    first by position, then by content hash.
    """

    def __init__(self, id_factory: IdentifierFactory = new_identifier):
        self.id_factory = id_factory
        self._positions: Dict[int, str] = {}
        self._contents: Dict[str, str] = {}

    def preserve(self, document: DocumentPort) -> int:
        self.clear()
        for index, line in enumerate(document.lines()):
            if not document.is_attached(line):
                continue
            identifier = document.get_identifier(line)
            if not identifier:
                continue
            self._positions[index] = identifier
            text = document.line_text(line)
            if text.strip():
                self._contents.setdefault(content_hash(text), identifier)
        logger.debug(f"Preserved {len(self._positions)} line identifiers")
        return len(self._positions)

    def restore(self, document: DocumentPort) -> RestoreReport:
        """
        Gives preserved identifiers back to lines that lost theirs. Lines that still carry
        an identifier are never overwritten, and an identifier already held by a line
        (or claimed earlier in this pass) is not handed out again.
        """
        report = RestoreReport()
        lines = document.lines()
        held: Set[str] = set()
        for line in lines:
            if document.is_attached(line):
                identifier = document.get_identifier(line)
                if identifier:
                    held.add(identifier)

        for index, line in enumerate(lines):
            if not document.is_attached(line) or document.get_identifier(line):
                continue

            candidate = self._positions.get(index)
            if candidate and candidate not in held:
                report.by_position += 1
            else:
                candidate = None
                text = document.line_text(line)
                if text.strip():
                    by_content = self._contents.get(content_hash(text))
                    if by_content and by_content not in held:
                        candidate = by_content
                        report.by_content += 1

            if candidate:
                document.set_identifier(line, candidate)
                document.set_index(line, index + 1)
                held.add(candidate)

        if report.total:
            logger.debug(f"Restored {report.by_position} identifiers by position, {report.by_content} by content")
        return report

    def ensure_all_have_identifiers(self, document: DocumentPort, lookup: Optional[PositionLookup] = None) -> int:
        """Fills any line still lacking an identifier from lookup(position), else with a fresh one."""
        lines = document.lines()
        held = {document.get_identifier(line) for line in lines if document.is_attached(line)}
        held.discard(None)

        assigned = 0
        for index, line in enumerate(lines):
            if not document.is_attached(line) or document.get_identifier(line):
                continue
            identifier = lookup(index) if lookup else None
            if not identifier or identifier in held:
                identifier = self.id_factory()
            document.set_identifier(line, identifier)
            document.set_index(line, index + 1)
            held.add(identifier)
            assigned += 1

        if assigned:
            logger.info(f"Assigned identifiers to {assigned} lines that had none")
        return assigned

    def has_preserved(self) -> bool:
        return bool(self._positions)

    def clear(self) -> None:
        self._positions.clear()
        self._contents.clear()
