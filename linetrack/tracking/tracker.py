"""
Event-driven identity tracking for one rendered document.

Each structural edit runs the same fixed sequence:

    preserve -> classify -> dispatch -> restore -> ensure identifiers
      -> enforce uniqueness -> restore cursor -> cache contents

Edits that leave the line structure alone only refresh the index attributes.
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Sequence

import structlog

from linetrack.config import TrackerConfig
from linetrack.models import (
    ContentDelta,
    CursorPosition,
    IdentifierFactory,
    LineRecord,
    Operation,
    OperationType,
    SelectionRange,
    TrackedOperation,
    new_identifier,
)
from linetrack.tracking.classifier import analyze, is_structural
from linetrack.tracking.cursor import CursorTracker
from linetrack.tracking.handlers import OperationHandlers, refresh_index_attributes
from linetrack.tracking.ports import Clock, DocumentPort, SystemClock
from linetrack.tracking.preservation import IdentityPreservationService
from linetrack.tracking.store import IdentityStore, LineContentCache
from linetrack.tracking.uniqueness import UniquenessEnforcer

logger = structlog.get_logger(__name__)


class LineTracker:
    def __init__(
        self,
        document: DocumentPort,
        config: Optional[TrackerConfig] = None,
        clock: Optional[Clock] = None,
        id_factory: IdentifierFactory = new_identifier,
        store: Optional[IdentityStore] = None,
    ):
        self.document = document
        self.config = config or TrackerConfig()
        self.clock = clock or SystemClock()
        self.store = store or IdentityStore()
        self.content_cache = LineContentCache()
        self.preservation = IdentityPreservationService(id_factory)
        self.handlers = OperationHandlers(document, id_factory)
        self.cursor = CursorTracker(document)
        self.enforcer = UniquenessEnforcer(id_factory)

        self.is_updating = False
        self.is_programmatic_update = False
        self.initialized = False
        self.last_line_count = len(document.lines())
        self.last_operation: Optional[Operation] = None

    def attach(self) -> None:
        """Subscribes to the document events. Not needed when a service forwards them."""
        self.document.on("selection-change", self.handle_selection_change)
        self.document.on("text-change", self.handle_text_change)

    # --- Initialization ---

    def initialize(self, lookup: Optional[Callable[[int], Optional[str]]] = None) -> bool:
        """
        Waits for the document to finish rendering, then makes sure every line carries an
        identifier. Gives up waiting after max_init_attempts and proceeds anyway.
        Returns whether the document reported ready.
        """
        attempts = self.config.max_init_attempts
        ready = False
        for attempt in range(1, attempts + 1):
            if self.document.is_ready():
                ready = True
                break
            if attempt < attempts:
                delay = self.config.init_retry_delay * attempt
                logger.debug(f"Document not ready (attempt {attempt}/{attempts}), retrying in {delay:.2f}s")
                self.clock.sleep(delay)

        if not ready:
            logger.warning(f"Document not ready after {attempts} attempts, initializing line tracking anyway")

        self.preservation.ensure_all_have_identifiers(self.document, lookup or self.store.get_line_identifier)
        self.enforcer.enforce_lines(self.document)
        self.store.rebuild(self.document)
        refresh_index_attributes(self.document)
        self.content_cache.cache_line_contents(self.document)
        self.last_line_count = len(self.document.lines())
        self.initialized = True
        logger.info(f"Line tracking initialized for {self.last_line_count} lines")
        return ready

    # --- Events ---

    def handle_selection_change(self, selection: Optional[SelectionRange], old_selection: Any = None, source: str = "user") -> None:
        if self.is_programmatic_update or self.is_updating:
            return
        self.cursor.track(selection)

    def handle_text_change(self, delta: Any, old_delta: Any = None, source: str = "user") -> Optional[Operation]:
        if self.is_updating or self.is_programmatic_update:
            return None

        delta = ContentDelta.from_payload(delta)
        cursor_before: Optional[CursorPosition] = self.cursor.last_position
        previous_count = self.last_line_count
        current_count = len(self.document.lines())

        enter = self.cursor.analyze_text_change(delta, self.content_cache)

        if not is_structural(delta, previous_count, current_count):
            self.update_line_index_attributes()
            self.content_cache.cache_line_contents(self.document)
            return None

        self.is_updating = True
        try:
            self.cursor.save()
            self.preservation.preserve(self.document)
            previous_positions: Dict[int, str] = dict(self.store.position_to_identifier)

            operation = analyze(delta, previous_count, current_count, self.document)
            self.last_operation = operation
            self._dispatch(operation, cursor_before, previous_positions, enter)

            if current_count != previous_count:
                logger.debug(f"Line count {previous_count} -> {current_count}")

            self.preservation.restore(self.document)
            self.preservation.ensure_all_have_identifiers(self.document, self.store.get_line_identifier)
            self.enforcer.enforce_lines(self.document)
            self.cursor.restore(silent=True)

            self.content_cache.cache_line_contents(self.document)
            self.store.rebuild(self.document)
            self.last_line_count = current_count
            return operation
        except Exception as e:
            logger.error(f"Line tracking failed after a structural change: {e}", exc_info=True)
            return None
        finally:
            self.is_updating = False

    def _dispatch(
        self,
        operation: Operation,
        cursor_before: Optional[CursorPosition],
        previous_positions: Dict[int, str],
        enter: Optional[TrackedOperation],
    ) -> None:
        kind = operation.kind
        if kind == OperationType.ENTER_AT_ZERO:
            self.handlers.enter_at_zero()
        elif kind == OperationType.SPLIT:
            # Enter at the start of a later line: the blank head is the new line
            if enter is not None and enter.line_index == operation.affected_index:
                self.handlers.enter_at_zero(operation.affected_index)
            else:
                self.handlers.split(operation.affected_index)
        elif kind == OperationType.NEW:
            self.handlers.new_lines(operation.affected_index, self.last_line_count, self.content_cache)
        elif kind in (OperationType.MERGE, OperationType.DELETE):
            self.handlers.delete_merge(cursor_before, previous_positions)
        else:
            refresh_index_attributes(self.document)

    # --- Attributes ---

    def update_line_index_attributes(self) -> None:
        """
        Rewrites index attributes and fills a missing identifier from the position map,
        then the content map, unless another line already holds it.
        """
        lines = self.document.lines()
        held = {self.document.get_identifier(line) for line in lines if self.document.is_attached(line)}
        for index, line in enumerate(lines):
            if not self.document.is_attached(line):
                continue
            text = self.document.line_text(line)
            identifier = self.document.get_identifier(line)
            if not identifier:
                for candidate in (self.store.get_line_identifier(index), self.store.identifier_for_content(text)):
                    if candidate and candidate not in held:
                        identifier = candidate
                        self.document.set_identifier(line, identifier)
                        held.add(identifier)
                        break
            self.document.set_index(line, index + 1)
            if identifier:
                self.store.set_line_identifier(index, identifier)
                self.store.map_content(text, identifier)

    def refresh_line_identifiers(self, records: Sequence[LineRecord]) -> None:
        """Pushes reconciled record identifiers onto the rendered lines, position by position."""
        lines = self.document.lines()
        for index, record in enumerate(records):
            if index >= len(lines):
                break
            line = lines[index]
            if not self.document.is_attached(line):
                continue
            self.document.set_identifier(line, record.identifier)
            self.document.set_index(line, index + 1)
        self.enforcer.enforce_lines(self.document)
        self.store.rebuild(self.document)

    def adapter_identifiers(self) -> Dict[int, str]:
        """Identifiers currently rendered, by 0-based position."""
        result = {}
        for index, line in enumerate(self.document.lines()):
            if not self.document.is_attached(line):
                continue
            identifier = self.document.get_identifier(line)
            if identifier:
                result[index] = identifier
        return result

    # --- Programmatic updates ---

    def begin_programmatic_update(self) -> None:
        self.is_programmatic_update = True
        self.preservation.preserve(self.document)
        self.cursor.save()

    def end_programmatic_update(self) -> None:
        try:
            self.preservation.restore(self.document)
            self.preservation.ensure_all_have_identifiers(self.document, self.store.get_line_identifier)
            self.enforcer.enforce_lines(self.document)
            refresh_index_attributes(self.document)
            self.cursor.restore(silent=True)
            self.content_cache.cache_line_contents(self.document)
            self.store.rebuild(self.document)
            self.last_line_count = len(self.document.lines())
        finally:
            self.is_programmatic_update = False

    @contextmanager
    def programmatic_update(self) -> Iterator["LineTracker"]:
        self.begin_programmatic_update()
        try:
            yield self
        finally:
            self.end_programmatic_update()

    def reset(self) -> None:
        self.store.clear()
        self.content_cache.clear()
        self.preservation.clear()
        self.cursor.reset_operation()
        self.initialized = False
