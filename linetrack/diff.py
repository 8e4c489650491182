"""
Per-line comparison of an original document against a suggested version.

Lines are paired by identifier, never by position, so a suggestion that inserts or
removes lines still lines up with the original. Text segments come from a
character-level diff_match_patch diff with semantic cleanup.
"""

from enum import Enum
from typing import Any, Dict, List, Sequence

import structlog
from diff_match_patch import diff_match_patch
from pydantic import BaseModel, Field

from linetrack.content import is_delta_payload, parse_stringified_delta, plain_text
from linetrack.models import LineContent, LineRecord

logger = structlog.get_logger(__name__)


class ChangeType(str, Enum):
    UNCHANGED = "unchanged"
    ADDITION = "addition"
    DELETION = "deletion"
    MODIFICATION = "modification"


class SegmentType(str, Enum):
    UNCHANGED = "unchanged"
    ADDITION = "addition"
    DELETION = "deletion"


class DiffSegment(BaseModel):
    type: SegmentType
    content: str


class LineDiff(BaseModel):
    original: str = ""
    suggested: str = ""
    change_type: ChangeType
    segments: List[DiffSegment] = Field(default_factory=list)


class ChangedLine(BaseModel):
    identifier: str
    line_number: int
    original_content: LineContent = ""
    suggested_content: LineContent = ""
    diff: LineDiff


class DiffSummary(BaseModel):
    total_changes: int = 0
    additions: int = 0
    deletions: int = 0
    modifications: int = 0
    changed_lines: List[ChangedLine] = Field(default_factory=list)

    def describe(self) -> str:
        parts = []
        for count, label in ((self.additions, "addition"), (self.deletions, "deletion"), (self.modifications, "modification")):
            if count:
                parts.append(f"{count} {label}{'' if count == 1 else 's'}")
        return ", ".join(parts) if parts else "No changes"


_SEGMENT_TYPES = {0: SegmentType.UNCHANGED, 1: SegmentType.ADDITION, -1: SegmentType.DELETION}


def generate_line_diff(original: str, suggested: str) -> LineDiff:
    if original == suggested:
        segments = [DiffSegment(type=SegmentType.UNCHANGED, content=original)] if original else []
        return LineDiff(original=original, suggested=suggested, change_type=ChangeType.UNCHANGED, segments=segments)

    if not original:
        change_type = ChangeType.ADDITION
    elif not suggested:
        change_type = ChangeType.DELETION
    else:
        change_type = ChangeType.MODIFICATION

    dmp = diff_match_patch()
    diffs = dmp.diff_main(original, suggested, False)
    dmp.diff_cleanupSemantic(diffs)
    segments = [DiffSegment(type=_SEGMENT_TYPES[op], content=text) for op, text in diffs if text]

    return LineDiff(original=original, suggested=suggested, change_type=change_type, segments=segments)


def generate_diff(original_lines: Sequence[LineRecord], suggested_lines: Sequence[LineRecord]) -> Dict[str, LineDiff]:
    """
    Diffs every line by identifier. Lines only in the suggestion diff against empty text,
    lines only in the original diff towards empty text.
    """
    originals = {line.identifier: line for line in original_lines}
    diff_map: Dict[str, LineDiff] = {}

    for suggested in suggested_lines:
        original = originals.get(suggested.identifier)
        original_text = plain_text(original.content) if original else ""
        diff_map[suggested.identifier] = generate_line_diff(original_text, plain_text(suggested.content))

    suggested_ids = {line.identifier for line in suggested_lines}
    for original in original_lines:
        if original.identifier not in suggested_ids:
            diff_map[original.identifier] = generate_line_diff(plain_text(original.content), "")

    logger.debug(f"Diffed {len(original_lines)} original lines against {len(suggested_lines)} suggested lines")
    return diff_map


def generate_diff_summary(original_lines: Sequence[LineRecord], suggested_lines: Sequence[LineRecord]) -> DiffSummary:
    diff_map = generate_diff(original_lines, suggested_lines)
    originals = {line.identifier: line for line in original_lines}
    suggestions = {line.identifier: line for line in suggested_lines}

    summary = DiffSummary()
    for identifier, line_diff in diff_map.items():
        if line_diff.change_type == ChangeType.UNCHANGED:
            continue
        original = originals.get(identifier)
        suggested = suggestions.get(identifier)

        if line_diff.change_type == ChangeType.ADDITION:
            summary.additions += 1
        elif line_diff.change_type == ChangeType.DELETION:
            summary.deletions += 1
        else:
            summary.modifications += 1

        # Deleted lines are placed where they used to be
        line_number = (original or suggested).line_number
        summary.changed_lines.append(
            ChangedLine(
                identifier=identifier,
                line_number=line_number,
                original_content=original.content if original else "",
                suggested_content=suggested.content if suggested else "",
                diff=line_diff,
            )
        )

    summary.changed_lines.sort(key=lambda line: line.line_number)
    summary.total_changes = summary.additions + summary.deletions + summary.modifications
    return summary


def group_consecutive_changes(changed_lines: Sequence[ChangedLine]) -> List[List[ChangedLine]]:
    """Clusters changes whose line numbers follow each other, for review one block at a time."""
    if not changed_lines:
        return []
    ordered = sorted(changed_lines, key=lambda line: line.line_number)
    groups = [[ordered[0]]]
    for line in ordered[1:]:
        if line.line_number == groups[-1][-1].line_number + 1:
            groups[-1].append(line)
        else:
            groups.append([line])
    return groups


def detect_formatting_changes(original: Any, suggested: Any) -> bool:
    """
    True when two versions of a line differ in formatting: one is rich and the other is not,
    or op attributes differ. Text-only differences are not formatting changes.
    """
    original = parse_stringified_delta(original)
    suggested = parse_stringified_delta(suggested)
    original_rich = is_delta_payload(original)
    suggested_rich = is_delta_payload(suggested)

    if not original_rich and not suggested_rich:
        return False
    if original_rich != suggested_rich:
        return True

    original_ops = original["ops"] if isinstance(original, dict) else original.ops
    suggested_ops = suggested["ops"] if isinstance(suggested, dict) else suggested.ops
    if len(original_ops) != len(suggested_ops):
        return True

    for before, after in zip(original_ops, suggested_ops):
        before_insert, after_insert = _op_field(before, "insert"), _op_field(after, "insert")
        if isinstance(before_insert, str) and isinstance(after_insert, str) and before_insert != after_insert:
            continue
        if (_op_field(before, "attributes") or {}) != (_op_field(after, "attributes") or {}):
            return True
    return False


def _op_field(op: Any, name: str) -> Any:
    if isinstance(op, dict):
        return op.get(name)
    return getattr(op, name, None)
