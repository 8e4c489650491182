from typing import List, Optional, Sequence

import structlog

from linetrack.models import IdentifierFactory, LineRecord, new_identifier
from linetrack.tracking.ports import DocumentPort

logger = structlog.get_logger(__name__)


def find_duplicates(identifiers: Sequence[Optional[str]]) -> List[int]:
    """Positions holding an identifier already seen earlier in the sequence. Missing identifiers are ignored."""
    seen = set()
    duplicates = []
    for index, identifier in enumerate(identifiers):
        if not identifier:
            continue
        if identifier in seen:
            duplicates.append(index)
        else:
            seen.add(identifier)
    return duplicates


class UniquenessEnforcer:
    """Repairs duplicate identifiers: the first holder keeps it, every later holder gets a fresh one."""

    def __init__(self, id_factory: IdentifierFactory = new_identifier):
        self.id_factory = id_factory

    def enforce_lines(self, document: DocumentPort) -> List[int]:
        lines = document.lines()
        identifiers = [document.get_identifier(line) if document.is_attached(line) else None for line in lines]
        duplicates = find_duplicates(identifiers)
        if not duplicates:
            return []

        logger.info(f"Found {len(duplicates)} lines with duplicate identifiers, repairing")
        for index in duplicates:
            line = lines[index]
            identifier = self.id_factory()
            document.set_identifier(line, identifier)
            document.set_index(line, index + 1)
            logger.debug(f"Line {index + 1}: duplicate replaced by {identifier}")
        return duplicates

    def enforce_records(self, records: List[LineRecord]) -> List[int]:
        """Repairs records in place (the list slots are replaced by copies)."""
        duplicates = find_duplicates([record.identifier for record in records])
        if not duplicates:
            return []

        logger.info(f"Found {len(duplicates)} reconciled lines with duplicate identifiers, repairing")
        for index in duplicates:
            records[index] = records[index].model_copy(update={"identifier": self.id_factory()})
        return duplicates
