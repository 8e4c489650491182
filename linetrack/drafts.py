"""
Conversion between persisted line rows and LineRecords.

A stored row carries the published content and line number plus an optional draft
(content and/or line number) written by a reviewer. Deleted lines stay in storage
with the draft set to DELETED_MARKER.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from linetrack.content import parse_stringified_delta, plain_text
from linetrack.models import LineContent, LineRecord
from linetrack.tracking.store import IdentityStore

logger = structlog.get_logger(__name__)

DELETED_MARKER = "{deleted-uuid}"


class StoredLine(BaseModel):
    id: str = Field(..., description="Line identifier.")
    line_number: int = Field(..., description="Published 1-based position.")
    content: Optional[LineContent] = Field("", description="Published content, plain or a (possibly JSON-encoded) delta.")
    draft: Optional[LineContent] = Field(None, description="Draft content, or DELETED_MARKER.")
    line_number_draft: Optional[int] = None
    original_author: Optional[str] = None
    edited_by: List[str] = Field(default_factory=list)


class SuggestionRow(BaseModel):
    """A reviewer's proposed version of one line; line_uuid is empty for proposed new lines."""

    id: str
    line_uuid: Optional[str] = None
    content: Optional[LineContent] = ""
    draft: Optional[LineContent] = None
    line_number: Optional[int] = None
    line_number_draft: Optional[int] = None


RowLike = Union[StoredLine, Dict[str, Any]]


def parse_rows(rows: Iterable[RowLike]) -> List[StoredLine]:
    """Validates raw rows, skipping the ones that do not validate."""
    parsed = []
    for row in rows or []:
        if isinstance(row, StoredLine):
            parsed.append(row)
            continue
        try:
            parsed.append(StoredLine.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Skipping invalid line row {row!r}: {e}")
    return parsed


def parse_suggestions(suggestions: Iterable[Union[SuggestionRow, Dict[str, Any]]]) -> List[SuggestionRow]:
    parsed = []
    for suggestion in suggestions or []:
        if isinstance(suggestion, SuggestionRow):
            parsed.append(suggestion)
            continue
        try:
            parsed.append(SuggestionRow.model_validate(suggestion))
        except ValidationError as e:
            logger.warning(f"Skipping invalid suggestion {suggestion!r}: {e}")
    return parsed


def process_lines_data(
    rows: Iterable[RowLike],
    store: Optional[IdentityStore] = None,
    use_drafts: bool = False,
) -> List[LineRecord]:
    """
    Builds the ordered record list for a document.

    - Rows whose draft is DELETED_MARKER are dropped.
    - JSON-encoded deltas are parsed back into delta dicts.
    - With use_drafts, draft content and draft line number win over the published ones.
    - Records are sorted by effective line number and renumbered 1..n.
    - The store, if given, learns every non-blank text -> identifier pair.
    """
    by_line_number: Dict[int, LineRecord] = {}

    for row in parse_rows(rows):
        if row.draft == DELETED_MARKER:
            continue

        use_draft_content = use_drafts and row.draft is not None
        use_draft_number = use_drafts and row.line_number_draft is not None

        original_content = parse_stringified_delta(row.content if row.content is not None else "")
        content = parse_stringified_delta(row.draft) if use_draft_content else original_content
        line_number = row.line_number_draft if use_draft_number else row.line_number

        # Two rows claiming the same position: the later one wins
        existing = by_line_number.get(line_number)
        if existing is not None:
            logger.warning(
                f"Rows {existing.identifier} and {row.id} both claim line {line_number}, keeping {row.id}"
            )
        by_line_number[line_number] = LineRecord(
            identifier=row.id,
            line_number=max(line_number, 1),
            content=content,
            original_author=row.original_author,
            edited_by=list(row.edited_by),
            has_draft=use_draft_content or use_draft_number,
            original_content=original_content,
            original_line_number=row.line_number,
        )
        if store is not None:
            store.map_content(plain_text(content), row.id)

    records = [by_line_number[number] for number in sorted(by_line_number)]
    records = [record.model_copy(update={"line_number": index + 1}) for index, record in enumerate(records)]
    logger.debug(f"Processed {len(records)} stored lines (drafts {'on' if use_drafts else 'off'})")
    return records


def find_new_lines(rows: Iterable[RowLike], suggestions: Iterable[Union[SuggestionRow, Dict[str, Any]]]) -> List[SuggestionRow]:
    """Suggestions that do not refer to any existing line."""
    existing = {row.id for row in parse_rows(rows)}
    return [s for s in parse_suggestions(suggestions) if not s.line_uuid or s.line_uuid not in existing]


def merge_lines_with_suggestions(
    rows: Iterable[RowLike],
    suggestions: Iterable[Union[SuggestionRow, Dict[str, Any]]],
) -> List[StoredLine]:
    """
    Overlays suggestions on the stored rows as drafts. Suggestions for unknown lines are
    appended as new rows with empty published content.
    """
    base = parse_rows(rows)
    parsed = parse_suggestions(suggestions)
    by_line = {}
    for suggestion in parsed:
        if suggestion.line_uuid:
            by_line.setdefault(suggestion.line_uuid, suggestion)

    merged = []
    for row in base:
        suggestion = by_line.get(row.id)
        if suggestion is None:
            merged.append(row)
            continue
        merged.append(
            row.model_copy(
                update={
                    "draft": suggestion.draft or suggestion.content,
                    "line_number_draft": suggestion.line_number_draft or suggestion.line_number or row.line_number,
                }
            )
        )

    existing = {row.id for row in base}
    for suggestion in parsed:
        if suggestion.line_uuid and suggestion.line_uuid in existing:
            continue
        highest = max((row.line_number for row in merged), default=0)
        merged.append(
            StoredLine(
                id=suggestion.id,
                line_number=highest + 1,
                content="",
                draft=suggestion.draft or suggestion.content,
                line_number_draft=suggestion.line_number_draft or suggestion.line_number or highest + 1,
            )
        )
    return merged


def locate_line(records: Sequence[LineRecord], identifier: Optional[str] = None, line_number: Optional[int] = None) -> Optional[LineRecord]:
    """Resolves a line by identifier, falling back to its line number when the identifier is absent or unknown."""
    if identifier:
        for record in records:
            if record.identifier == identifier:
                return record
    if line_number is not None:
        for record in records:
            if record.line_number == line_number:
                return record
    return None


def to_stored_lines(records: Sequence[LineRecord]) -> List[StoredLine]:
    """
    Rows for persisting records. Records carrying a draft keep their published content and
    number and store the current values as the draft.
    """
    rows = []
    for record in records:
        if record.has_draft:
            rows.append(
                StoredLine(
                    id=record.identifier,
                    line_number=record.original_line_number or record.line_number,
                    content=record.original_content if record.original_content is not None else "",
                    draft=record.content,
                    line_number_draft=record.line_number,
                    original_author=record.original_author,
                    edited_by=record.edited_by,
                )
            )
        else:
            rows.append(
                StoredLine(
                    id=record.identifier,
                    line_number=record.line_number,
                    content=record.content,
                    original_author=record.original_author,
                    edited_by=record.edited_by,
                )
            )
    return rows
