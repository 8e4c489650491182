import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from linetrack.content import plain_text

logger = structlog.get_logger(__name__)

# Rich content as stored by the editor: either plain text or a delta payload ({"ops": [...]})
LineContent = Union[str, Dict[str, Any]]

IdentifierFactory = Callable[[], str]


def new_identifier() -> str:
    return str(uuid.uuid4())


class OperationType(str, Enum):
    """Kinds of structural change recognised by the classifier."""

    SPLIT = "split"
    NEW = "new"
    MERGE = "merge"
    DELETE = "delete"
    MODIFY = "modify"
    ENTER_AT_ZERO = "enter-at-zero"
    NONE = "none"


class MatchStrategy(str, Enum):
    """Tag describing how a line obtained its identifier."""

    EXACT_CONTENT = "exact-content"
    CONTENT_IDENTIFIER = "content-identifier"
    NEARBY_SIMILAR = "nearby-similar"
    GLOBAL_SIMILAR = "global-similar"
    EMPTY_LINE = "empty-line"
    ADAPTER_IDENTIFIER = "adapter-identifier"
    POSITION = "position"
    ENTER_NEW_LINE = "enter-new-line"
    ENTER_MOVED_CONTENT = "enter-moved-content"
    NEW_GENERATION = "new-generation"
    ERROR_FALLBACK = "error-fallback"


class LineRecord(BaseModel):
    """
    One line of a tracked document.
    The identifier is never rewritten in place: use model_copy to derive a record with another one.
    """

    identifier: str = Field(..., description="Opaque, globally unique line identifier.")
    line_number: int = Field(..., ge=1, description="1-based position, recomputed on every reconciliation.")
    content: LineContent = Field("", description="Plain text or a rich delta payload.")
    original_author: Optional[str] = Field(None, description="User who created the line.")
    edited_by: List[str] = Field(default_factory=list, description="Users who changed the line, in order.")
    has_draft: bool = False

    # Reference values kept when a record was loaded from persistence with a draft applied
    original_content: Optional[LineContent] = None
    original_line_number: Optional[int] = None

    def edited(self, content: LineContent, line_number: int, user_id: Optional[str]) -> "LineRecord":
        """
        Returns a copy placed at line_number with new content, crediting user_id if the text changed.
        When the text is unchanged the existing (possibly rich) content is kept.
        """
        if plain_text(content) == plain_text(self.content):
            return self.model_copy(update={"line_number": line_number})
        editors = self.edited_by
        if user_id and user_id not in editors:
            editors = [*editors, user_id]
        return self.model_copy(update={"line_number": line_number, "content": content, "edited_by": editors})


# --- Deltas ---


class InsertOp(BaseModel):
    insert: Union[str, Dict[str, Any]]
    attributes: Optional[Dict[str, Any]] = None

    @property
    def length(self) -> int:
        # Embeds (images, formulas) occupy a single unit
        return len(self.insert) if isinstance(self.insert, str) else 1


class RetainOp(BaseModel):
    retain: int = Field(..., ge=0)
    attributes: Optional[Dict[str, Any]] = None

    @property
    def length(self) -> int:
        return self.retain


class DeleteOp(BaseModel):
    delete: int = Field(..., ge=0)

    @property
    def length(self) -> int:
        return self.delete


DeltaOp = Union[InsertOp, RetainOp, DeleteOp]


class ContentDelta(BaseModel):
    """An ordered list of insert/retain/delete ops: a change or a full document snapshot."""

    ops: List[DeltaOp] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "ContentDelta":
        """
        Builds a delta from a raw payload ({"ops": [...]}, a bare op list or an existing delta).
        Ops that do not validate are dropped instead of failing the whole payload.
        """
        if isinstance(payload, ContentDelta):
            return payload
        if isinstance(payload, dict):
            raw_ops = payload.get("ops") or []
        elif isinstance(payload, list):
            raw_ops = payload
        else:
            return cls()

        ops: List[DeltaOp] = []
        for raw in raw_ops:
            if isinstance(raw, (InsertOp, RetainOp, DeleteOp)):
                ops.append(raw)
                continue
            if not isinstance(raw, dict):
                logger.warning(f"Skipping non-object delta op: {raw!r}")
                continue
            try:
                if "insert" in raw:
                    ops.append(InsertOp.model_validate(raw))
                elif "retain" in raw:
                    ops.append(RetainOp.model_validate(raw))
                elif "delete" in raw:
                    ops.append(DeleteOp.model_validate(raw))
                else:
                    logger.warning(f"Skipping unknown delta op: {raw!r}")
            except ValidationError as e:
                logger.warning(f"Skipping malformed delta op {raw!r}: {e}")
        return cls(ops=ops)

    def inserts(self) -> List[InsertOp]:
        return [op for op in self.ops if isinstance(op, InsertOp)]

    def has_delete(self) -> bool:
        return any(isinstance(op, DeleteOp) for op in self.ops)


# --- Selection & operations ---


class SelectionRange(BaseModel):
    index: int = Field(..., ge=0)
    length: int = Field(0, ge=0)


class CursorPosition(BaseModel):
    """Last known cursor, with the line it sat on and its column inside that line."""

    index: int
    line_index: int
    length: int = 0
    column: int = 0


class Operation(BaseModel):
    """Transient description of one structural change."""

    kind: OperationType
    affected_index: int = -1
    line_count_delta: int = 0


class TrackedOperation(BaseModel):
    """Keystroke-level operation detected from cursor history (currently only Enter at column 0)."""

    kind: str = "enter-at-position-0"
    line_index: int
    moved_content: str = ""


# --- Matching results ---


class MatchResult(BaseModel):
    index: int
    similarity: float
    strategy: MatchStrategy


class ReconcileStats(BaseModel):
    preserved: int = 0
    regenerated: int = 0
    strategies: Dict[str, int] = Field(default_factory=dict)

    def record(self, strategy: MatchStrategy, preserved: bool) -> None:
        if preserved:
            self.preserved += 1
        else:
            self.regenerated += 1
        self.strategies[strategy.value] = self.strategies.get(strategy.value, 0) + 1


class ReconcileResult(BaseModel):
    lines: List[LineRecord] = Field(default_factory=list)
    stats: ReconcileStats = Field(default_factory=ReconcileStats)
    strategies: List[MatchStrategy] = Field(default_factory=list, description="Decision tag per target line.")

    @property
    def identifiers(self) -> List[str]:
        return [line.identifier for line in self.lines]


class RestoreReport(BaseModel):
    by_position: int = 0
    by_content: int = 0

    @property
    def total(self) -> int:
        return self.by_position + self.by_content
