from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog

from linetrack.config import LineTrackConfig
from linetrack.content import plain_text
from linetrack.drafts import RowLike, StoredLine, locate_line, process_lines_data, to_stored_lines
from linetrack.models import (
    IdentifierFactory,
    LineContent,
    LineRecord,
    ReconcileResult,
    TrackedOperation,
    new_identifier,
)
from linetrack.tracking.matching import MatchingEngine
from linetrack.tracking.ports import SOURCE_API, Clock, DocumentPort
from linetrack.tracking.store import IdentityStore
from linetrack.tracking.tracker import LineTracker

logger = structlog.get_logger(__name__)


class LineDataService:
    """
    Owns the canonical line records of one document for one editing session.

    Detached, it reconciles content lists handed to it. Attached to a document, it
    follows every text change: the tracker repairs the rendered identifiers first, then
    the live line texts are reconciled against the records and the result is pushed
    back onto the document.
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        config: Optional[LineTrackConfig] = None,
        id_factory: IdentifierFactory = new_identifier,
        clock: Optional[Clock] = None,
    ):
        self.user_id = user_id
        self.config = config or LineTrackConfig()
        self.id_factory = id_factory
        self.clock = clock
        self.store = IdentityStore()
        self.engine = MatchingEngine(self.config.matching, id_factory)
        self.lines: List[LineRecord] = []
        self.last_result: Optional[ReconcileResult] = None
        self.document: Optional[DocumentPort] = None
        self.tracker: Optional[LineTracker] = None

    # --- Loading ---

    def load_rows(self, rows: Iterable[RowLike], use_drafts: bool = False) -> List[LineRecord]:
        records = process_lines_data(rows, self.store, use_drafts)
        return self.load_records(records)

    def load_records(self, records: Sequence[LineRecord]) -> List[LineRecord]:
        self.lines = [record.model_copy(update={"line_number": index + 1}) for index, record in enumerate(records)]
        self.store.seed(self.lines)
        logger.info(f"Loaded {len(self.lines)} lines")
        return self.lines

    # --- Document binding ---

    def attach(self, document: DocumentPort) -> LineTracker:
        self.document = document
        self.tracker = LineTracker(
            document,
            config=self.config.tracker,
            clock=self.clock,
            id_factory=self.id_factory,
            store=self.store,
        )
        document.on("selection-change", self.tracker.handle_selection_change)
        document.on("text-change", self._on_text_change)
        self.tracker.initialize()

        if self.lines:
            self.sync_from_document()
        else:
            # Nothing loaded: the rendered lines become the records
            self.lines = [
                LineRecord(
                    identifier=document.get_identifier(line) or self.id_factory(),
                    line_number=index + 1,
                    content=document.line_text(line),
                    original_author=self.user_id,
                )
                for index, line in enumerate(document.lines())
            ]
            self.store.seed(self.lines)
        return self.tracker

    def _on_text_change(self, delta: Any, old_delta: Any = None, source: str = "user") -> None:
        if self.tracker is None:
            return
        self.tracker.handle_text_change(delta, old_delta, source)
        if self.tracker.is_programmatic_update or self.tracker.is_updating:
            return
        self.sync_from_document()

    def sync_from_document(self) -> Optional[ReconcileResult]:
        """Reconciles the live line texts against the records and pushes the identifiers back."""
        if self.document is None or self.tracker is None:
            return None
        contents = [self.document.line_text(line) for line in self.document.lines()]
        enter = self.tracker.cursor.consume_operation()
        result = self.update_line_contents(
            contents,
            adapter_ids=self.tracker.adapter_identifiers(),
            enter_operation=enter,
        )
        self.tracker.refresh_line_identifiers(result.lines)
        return result

    # --- Updates ---

    def update_line_contents(
        self,
        contents: Sequence[LineContent],
        adapter_ids: Optional[Dict[int, str]] = None,
        enter_operation: Optional[TrackedOperation] = None,
    ) -> ReconcileResult:
        """Bulk reconciliation. An empty content list never wipes the existing records."""
        if not contents:
            logger.debug("Empty content received, keeping existing lines")
            return ReconcileResult(lines=list(self.lines))

        if abs(len(contents) - len(self.lines)) > 3:
            logger.info(f"Line count changed significantly: {len(self.lines)} -> {len(contents)}")

        result = self.engine.reconcile(
            contents,
            self.lines,
            content_map=self.store.content_to_identifier,
            adapter_ids=adapter_ids,
            user_id=self.user_id,
            enter_operation=enter_operation,
        )
        if result.stats.regenerated:
            logger.debug(f"Identifier stats: {result.stats.model_dump()}")
        self.lines = result.lines
        self.last_result = result
        return result

    def update_line_content(self, index: int, content: LineContent) -> LineRecord:
        """
        Replaces the content of one line and marks it as a draft. Missing lines up to
        index are created as empty draft lines.
        """
        while len(self.lines) <= index:
            self.lines.append(
                LineRecord(
                    identifier=self.id_factory(),
                    line_number=len(self.lines) + 1,
                    content="",
                    original_author=self.user_id,
                    has_draft=True,
                )
            )

        current = self.lines[index]
        editors = current.edited_by
        if self.user_id and self.user_id not in editors:
            editors = [*editors, self.user_id]
        updated = current.model_copy(update={"content": content, "has_draft": True, "edited_by": editors})
        self.lines[index] = updated
        self.store.map_content(plain_text(content), updated.identifier)
        return updated

    def apply_draft(self, records: Sequence[LineRecord]) -> Optional[ReconcileResult]:
        """
        Loads a saved draft into the attached document. The content is written as a
        programmatic update so it is not mistaken for user edits, then the records'
        identifiers are pushed onto the new lines.
        """
        self.load_records(records)
        if self.document is None or self.tracker is None:
            return None

        with self.tracker.programmatic_update():
            self.document.set_contents([plain_text(record.content) for record in self.lines], source=SOURCE_API)
        self.tracker.refresh_line_identifiers(self.lines)
        return self.sync_from_document()

    # --- Queries ---

    def locate(self, identifier: Optional[str] = None, line_number: Optional[int] = None) -> Optional[LineRecord]:
        return locate_line(self.lines, identifier, line_number)

    def identifiers(self) -> List[str]:
        return [line.identifier for line in self.lines]

    def to_rows(self) -> List[StoredLine]:
        return to_stored_lines(self.lines)
