"""
Decides whether an edit changed the line structure of the document and, if so, which
kind of structural operation it was. Pure functions of their inputs: classifying the
same delta twice gives the same answer.
"""

from typing import Optional

import structlog

from linetrack.models import ContentDelta, DeleteOp, InsertOp, Operation, OperationType, RetainOp
from linetrack.tracking.ports import DocumentPort

logger = structlog.get_logger(__name__)


def is_structural(delta: ContentDelta, previous_count: int, current_count: int) -> bool:
    """An edit is structural if it inserts a newline, deletes more than one unit, or changes the line count."""
    for op in delta.ops:
        if isinstance(op, InsertOp) and isinstance(op.insert, str) and "\n" in op.insert:
            return True
        if isinstance(op, DeleteOp) and op.delete > 1:
            return True
    return previous_count != current_count


def is_enter_at_zero(delta: ContentDelta, affected_index: int) -> bool:
    """Enter pressed at the very start of the document: a bare newline insert with no retain before it."""
    if affected_index != 0:
        return False
    for op in delta.ops:
        if isinstance(op, RetainOp):
            return False
        if isinstance(op, InsertOp) and op.insert == "\n":
            return True
    return False


def classify(delta: ContentDelta, previous_count: int, current_count: int, affected_index: int) -> Operation:
    line_count_delta = current_count - previous_count

    if is_enter_at_zero(delta, affected_index):
        return Operation(kind=OperationType.ENTER_AT_ZERO, affected_index=0, line_count_delta=line_count_delta)

    if current_count > previous_count:
        # A pure newline means Enter mid-line; anything else is pasted or typed multi-line content
        bare_newline = any(op.insert == "\n" for op in delta.inserts())
        kind = OperationType.SPLIT if bare_newline else OperationType.NEW
    elif current_count < previous_count:
        # Backspace joining two lines can arrive without an explicit delete length
        kind = OperationType.DELETE if delta.has_delete() else OperationType.MERGE
    elif delta.ops:
        kind = OperationType.MODIFY
    else:
        kind = OperationType.NONE

    return Operation(kind=kind, affected_index=affected_index, line_count_delta=line_count_delta)


def affected_line_index(document: DocumentPort) -> int:
    """
    Index of the line holding the character just before the selection, i.e. the last
    line touched by the range [0, selection). Returns -1 without a selection.
    """
    selection = document.get_selection()
    if selection is None:
        return -1
    return document.line_index_at(max(selection.index - 1, 0))


def analyze(
    delta: ContentDelta,
    previous_count: int,
    current_count: int,
    document: Optional[DocumentPort] = None,
) -> Operation:
    affected_index = affected_line_index(document) if document is not None else -1
    operation = classify(delta, previous_count, current_count, affected_index)
    logger.debug(f"Operation {operation.kind.value} at line {operation.affected_index + 1}")
    return operation
