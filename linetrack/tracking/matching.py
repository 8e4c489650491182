"""
Bulk reconciliation of a whole list of line contents against the previous line records.

Every target line gets the identifier of the previous line it most plausibly continues,
or a fresh one. Decisions run through a fixed cascade, cheapest and most certain first:

    exact text -> content map -> nearby similarity -> global similarity
      -> empty line -> adapter identifier -> position fallback -> fresh identifier
"""

from typing import Dict, List, Optional, Sequence, Set

import structlog

from linetrack.config import MatchingConfig
from linetrack.content import plain_text
from linetrack.models import (
    IdentifierFactory,
    LineContent,
    LineRecord,
    MatchResult,
    MatchStrategy,
    ReconcileResult,
    ReconcileStats,
    TrackedOperation,
    new_identifier,
)
from linetrack.similarity import text_similarity
from linetrack.tracking.uniqueness import UniquenessEnforcer

logger = structlog.get_logger(__name__)


def _is_blank(text: str) -> bool:
    return not text or not text.strip()


class MatchingEngine:
    def __init__(
        self,
        config: Optional[MatchingConfig] = None,
        id_factory: IdentifierFactory = new_identifier,
        enforcer: Optional[UniquenessEnforcer] = None,
    ):
        self.config = config or MatchingConfig()
        self.id_factory = id_factory
        self.enforcer = enforcer or UniquenessEnforcer(id_factory)

    # --- Single line ---

    def find_best_match(
        self,
        content: LineContent,
        index: int,
        previous: Sequence[LineRecord],
        used: Set[int],
        content_map: Optional[Dict[str, str]] = None,
        adapter_ids: Optional[Dict[int, str]] = None,
        position_fallback: bool = True,
        target_count: Optional[int] = None,
    ) -> Optional[MatchResult]:
        """
        Index of the unclaimed previous line that target line `index` continues, or None.
        target_count is the number of lines being reconciled; when omitted the document is
        assumed to have grown, so a blank line over a blank slot counts as new.
        """
        texts = [plain_text(record.content) for record in previous]
        identifiers = [record.identifier for record in previous]
        grew = target_count is None or target_count > len(previous)
        return self._find(plain_text(content), index, texts, identifiers, used, content_map, adapter_ids, position_fallback, grew)

    def _find(
        self,
        text: str,
        index: int,
        texts: List[str],
        identifiers: List[str],
        used: Set[int],
        content_map: Optional[Dict[str, str]],
        adapter_ids: Optional[Dict[int, str]],
        position_fallback: bool,
        grew: bool = True,
    ) -> Optional[MatchResult]:
        cfg = self.config
        empty = _is_blank(text)

        # A blank line in a slot that did not exist, or that was blank before lines were added, was just created
        if empty and (index >= len(texts) or (grew and _is_blank(texts[index]))):
            return None

        if not empty:
            match = self._match_content(text, index, texts, identifiers, used, content_map)
            if match:
                return match
        else:
            for i, previous_text in enumerate(texts):
                if i not in used and _is_blank(previous_text):
                    return MatchResult(index=i, similarity=1.0, strategy=MatchStrategy.EMPTY_LINE)

        if adapter_ids and index in adapter_ids:
            reported = adapter_ids[index]
            for i, identifier in enumerate(identifiers):
                if identifier == reported:
                    if i not in used:
                        return MatchResult(index=i, similarity=0.95, strategy=MatchStrategy.ADAPTER_IDENTIFIER)
                    break

        if position_fallback:
            for offset in range(cfg.position_tolerance + 1):
                for pos in (index - offset, index + offset):
                    if pos < 0 or pos >= len(texts) or pos in used:
                        continue
                    score = text_similarity(text, texts[pos])
                    if score > cfg.position_threshold or (empty and _is_blank(texts[pos])):
                        return MatchResult(index=pos, similarity=score, strategy=MatchStrategy.POSITION)

        return None

    def _match_content(
        self,
        text: str,
        index: int,
        texts: List[str],
        identifiers: List[str],
        used: Set[int],
        content_map: Optional[Dict[str, str]],
    ) -> Optional[MatchResult]:
        cfg = self.config

        for i, previous_text in enumerate(texts):
            if i not in used and previous_text == text:
                return MatchResult(index=i, similarity=1.0, strategy=MatchStrategy.EXACT_CONTENT)

        if content_map and text in content_map:
            mapped = content_map[text]
            for i, identifier in enumerate(identifiers):
                if identifier == mapped:
                    if i not in used:
                        return MatchResult(index=i, similarity=1.0, strategy=MatchStrategy.CONTENT_IDENTIFIER)
                    break

        best: Optional[MatchResult] = None
        start = max(0, index - cfg.nearby_window)
        end = min(len(texts) - 1, index + cfg.nearby_window)
        for i in range(start, end + 1):
            if i in used:
                continue
            score = text_similarity(text, texts[i])
            if score >= cfg.nearby_threshold and (best is None or score > best.similarity):
                best = MatchResult(index=i, similarity=score, strategy=MatchStrategy.NEARBY_SIMILAR)
                if score >= cfg.early_exit_threshold:
                    return best
        if best:
            return best

        for i, previous_text in enumerate(texts):
            if i in used or start <= i <= end:
                continue
            score = text_similarity(text, previous_text)
            if score >= cfg.global_threshold and (best is None or score > best.similarity):
                best = MatchResult(index=i, similarity=score, strategy=MatchStrategy.GLOBAL_SIMILAR)
                if score >= cfg.early_exit_threshold:
                    break
        return best

    # --- Whole document ---

    def reconcile(
        self,
        new_contents: Sequence[LineContent],
        previous: Sequence[LineRecord],
        content_map: Optional[Dict[str, str]] = None,
        adapter_ids: Optional[Dict[int, str]] = None,
        user_id: Optional[str] = None,
        enter_operation: Optional[TrackedOperation] = None,
    ) -> ReconcileResult:
        """
        Builds the new record list for new_contents.

        content_map is updated in place with the text of every non-blank line placed.
        The returned strategies list holds one tag per target line.
        """
        if content_map is None:
            content_map = {}
        texts = [plain_text(record.content) for record in previous]
        identifiers = [record.identifier for record in previous]
        new_texts = [plain_text(content) for content in new_contents]
        grew = len(new_contents) > len(previous)

        records: List[Optional[LineRecord]] = [None] * len(new_contents)
        strategies: List[Optional[MatchStrategy]] = [None] * len(new_contents)
        used: Set[int] = set()
        stats = ReconcileStats()

        def place_match(i: int, match: MatchResult) -> None:
            used.add(match.index)
            records[i] = previous[match.index].edited(new_contents[i], i + 1, user_id)
            strategies[i] = match.strategy
            stats.record(match.strategy, preserved=True)
            if not _is_blank(new_texts[i]):
                content_map[new_texts[i]] = previous[match.index].identifier

        def place_fresh(i: int, strategy: MatchStrategy) -> None:
            identifier = self.id_factory()
            records[i] = LineRecord(
                identifier=identifier,
                line_number=i + 1,
                content=new_contents[i] if new_contents[i] is not None else "",
                original_author=user_id,
            )
            strategies[i] = strategy
            stats.record(strategy, preserved=False)
            if not _is_blank(new_texts[i]):
                content_map[new_texts[i]] = identifier

        if enter_operation is not None:
            self._apply_enter_at_zero(enter_operation, new_texts, texts, used, place_match, place_fresh)

        # Pass 1: non-blank lines, content evidence only
        for i, text in enumerate(new_texts):
            if records[i] is not None or _is_blank(text):
                continue
            try:
                match = self._match_content(text, i, texts, identifiers, used, content_map)
                if match:
                    place_match(i, match)
            except Exception as e:
                logger.error(f"Matching failed for line {i + 1}: {e}", exc_info=True)
                place_fresh(i, MatchStrategy.ERROR_FALLBACK)

        # Pass 2: everything left, full cascade
        for i, text in enumerate(new_texts):
            if records[i] is not None:
                continue
            try:
                match = self._find(text, i, texts, identifiers, used, content_map, adapter_ids, True, grew)
                if match:
                    place_match(i, match)
                else:
                    place_fresh(i, MatchStrategy.NEW_GENERATION)
            except Exception as e:
                logger.error(f"Matching failed for line {i + 1}: {e}", exc_info=True)
                place_fresh(i, MatchStrategy.ERROR_FALLBACK)

        lines = [record for record in records if record is not None]
        repaired = self.enforcer.enforce_records(lines)
        if repaired:
            stats.preserved -= len(repaired)
            stats.regenerated += len(repaired)

        logger.info(
            f"Reconciled {len(lines)} lines against {len(previous)}: "
            f"{stats.preserved} preserved, {stats.regenerated} regenerated"
        )
        return ReconcileResult(lines=lines, stats=stats, strategies=[s for s in strategies if s is not None])

    def _apply_enter_at_zero(self, operation, new_texts, texts, used, place_match, place_fresh) -> bool:
        """
        Enter at the start of line k pushed its text down to k+1: k+1 keeps the identifier
        of the line that held that text, k is brand new.
        """
        k = operation.line_index
        moved = operation.moved_content
        if not moved or k < 0 or k + 1 >= len(new_texts):
            return False
        if not _is_blank(new_texts[k]):
            return False
        target = new_texts[k + 1]
        if not target or (moved not in target and target not in moved):
            return False

        def holds_moved(i: int) -> bool:
            text = texts[i]
            return not _is_blank(text) and (moved in text or text in moved)

        source = None
        if k < len(texts) and k not in used and holds_moved(k):
            source = k
        else:
            source = next((i for i in range(len(texts)) if i not in used and holds_moved(i)), None)
        if source is None:
            logger.debug(f"No previous line holds moved content {moved!r}")
            return False

        place_match(k + 1, MatchResult(index=source, similarity=1.0, strategy=MatchStrategy.ENTER_MOVED_CONTENT))
        place_fresh(k, MatchStrategy.ENTER_NEW_LINE)
        logger.debug(f"Enter at column 0: line {k + 2} keeps {texts[source]!r}, line {k + 1} is new")
        return True
