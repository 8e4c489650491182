"""
Tests for linetrack.tracking.matching (bulk reconciliation) and uniqueness repair.

Run: python3 test_matching.py
"""

import itertools
import sys

sys.path.insert(0, '.')

from linetrack.config import MatchingConfig
from linetrack.models import LineRecord, MatchStrategy, TrackedOperation
from linetrack.tracking.matching import MatchingEngine
from linetrack.tracking.uniqueness import UniquenessEnforcer, find_duplicates


def _ids(prefix="new"):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


def _engine(**config):
    return MatchingEngine(MatchingConfig(**config), id_factory=_ids())


def _records(*pairs):
    return [LineRecord(identifier=identifier, line_number=i + 1, content=content) for i, (identifier, content) in enumerate(pairs)]


def test_unchanged_content_is_idempotent():
    engine = _engine()
    previous = _records(("u1", "Scene 1"), ("u2", ""), ("u3", "Scene 2"), ("u4", ""))
    contents = ["Scene 1", "", "Scene 2", ""]

    first = engine.reconcile(contents, previous)
    assert first.identifiers == ["u1", "u2", "u3", "u4"]

    second = engine.reconcile(contents, first.lines)
    assert second.identifiers == first.identifiers
    assert second.stats.regenerated == 0
    print("PASS: idempotent reconciliation")


def test_split_keeps_head_identifier():
    engine = _engine()
    result = engine.reconcile(["ABC", "DEF"], _records(("u1", "ABCDEF")))
    assert result.identifiers == ["u1", "new-1"]
    assert result.strategies == [MatchStrategy.NEARBY_SIMILAR, MatchStrategy.NEW_GENERATION]
    assert result.stats.preserved == 1
    assert result.stats.regenerated == 1
    print("PASS: split")


def test_merge_keeps_first_identifier():
    engine = _engine()
    result = engine.reconcile(["FooBar"], _records(("u1", "Foo"), ("u2", "Bar")))
    assert result.identifiers == ["u1"]
    assert result.lines[0].content == "FooBar"
    print("PASS: merge")


def test_enter_at_zero_special_case():
    engine = _engine()
    operation = TrackedOperation(line_index=0, moved_content="Hello")
    result = engine.reconcile(["", "Hello"], _records(("u1", "Hello")), enter_operation=operation)

    assert result.identifiers == ["new-1", "u1"]
    assert result.lines[1].line_number == 2
    assert result.strategies == [MatchStrategy.ENTER_NEW_LINE, MatchStrategy.ENTER_MOVED_CONTENT]
    print("PASS: enter at zero (special case)")


def test_enter_at_zero_without_cursor_record():
    engine = _engine()
    result = engine.reconcile(["", "Hello"], _records(("u1", "Hello")))
    assert result.identifiers == ["new-1", "u1"]
    print("PASS: enter at zero (general cascade)")


def test_enter_special_case_ignored_when_shape_does_not_fit():
    engine = _engine()
    # The line left at the caret is not blank: the recorded operation does not apply
    operation = TrackedOperation(line_index=0, moved_content="Hello")
    result = engine.reconcile(["Hi", "Hello"], _records(("u1", "Hello")), enter_operation=operation)
    assert MatchStrategy.ENTER_MOVED_CONTENT not in result.strategies
    assert result.identifiers[1] == "u1"
    print("PASS: enter special case only on matching shape")


def test_enter_at_zero_finds_non_adjacent_source():
    engine = _engine()
    # The pushed-down text lived two lines further down before the edit
    operation = TrackedOperation(line_index=0, moved_content="Hello")
    previous = _records(("u1", "Intro"), ("u2", "Other"), ("u3", "Hello"))
    result = engine.reconcile(["", "Hello", "Intro", "Other"], previous, enter_operation=operation)

    assert result.identifiers == ["new-1", "u3", "u1", "u2"]
    assert result.strategies[:2] == [MatchStrategy.ENTER_NEW_LINE, MatchStrategy.ENTER_MOVED_CONTENT]
    print("PASS: enter at zero with a non-adjacent source line")


def test_scene_end_to_end_contents():
    engine = _engine()
    previous = _records(("u1", "Scene 1"), ("u2", "Scene 2"))
    operation = TrackedOperation(line_index=1, moved_content="Scene 2")
    result = engine.reconcile(["Scene 1", "", "Scene 2"], previous, enter_operation=operation)

    assert result.identifiers[0] == "u1"
    assert result.identifiers[2] == "u2"
    assert result.identifiers[1] not in ("u1", "u2")
    assert result.lines[2].line_number == 3
    print("PASS: scene end to end (contents)")


def test_new_blank_line_never_reuses_identifier():
    engine = _engine()
    previous = _records(("u1", "Foo"), ("u2", "Bar"))
    result = engine.reconcile(["Foo", "", "Bar"], previous)
    assert result.identifiers[0] == "u1"
    assert result.identifiers[2] == "u2"
    assert result.identifiers[1] not in ("u1", "u2")

    # Blank over blank in a document that grew is new as well
    result = engine.reconcile(["Foo", "", ""], _records(("u1", "Foo"), ("u2", "")))
    assert result.identifiers[1] not in ("u1", "u2")
    assert result.identifiers[2] not in ("u1", "u2")
    print("PASS: fresh empty lines")


def test_duplicates_in_previous_are_repaired():
    engine = _engine()
    previous = _records(("u1", "A"), ("u1", "B"))
    result = engine.reconcile(["A", "B"], previous)
    assert len(set(result.identifiers)) == len(result.identifiers)
    assert result.identifiers[0] == "u1"
    print("PASS: uniqueness of reconciled identifiers")


def test_content_map_lookup():
    engine = _engine()
    previous = _records(("u1", "Alpha"), ("u2", "Beta"))
    content_map = {"Gamma": "u2"}
    result = engine.reconcile(["Alpha", "Gamma"], previous, content_map=content_map)
    assert result.identifiers == ["u1", "u2"]
    assert result.strategies[1] == MatchStrategy.CONTENT_IDENTIFIER
    # Placed lines teach the map their text
    assert content_map["Alpha"] == "u1"
    print("PASS: content map lookup")


def test_adapter_identifier_fallback():
    engine = _engine()
    previous = _records(("u1", "Alpha"), ("u2", "Zzzz"))
    result = engine.reconcile(["Alpha", "qqqq"], previous, adapter_ids={1: "u2"})
    assert result.identifiers == ["u1", "u2"]
    assert result.strategies[1] == MatchStrategy.ADAPTER_IDENTIFIER
    print("PASS: adapter identifier")


def test_position_fallback():
    engine = _engine()
    previous = _records(("u1", "Alpha"), ("u2", "abcd"))
    result = engine.reconcile(["Alpha", "abxy"], previous)
    assert result.identifiers == ["u1", "u2"]
    assert result.strategies[1] == MatchStrategy.POSITION
    print("PASS: position fallback")


def test_global_similarity_outside_window():
    engine = _engine()
    previous = _records(
        ("u0", "Intro"),
        ("f1", "12345"),
        ("f2", "67890"),
        ("f3", "#####"),
        ("f4", "-----"),
        ("u5", "The quick brown fox jumps"),
    )
    result = engine.reconcile(["The quick brown fox jumped"], previous)
    assert result.identifiers == ["u5"]
    assert result.strategies == [MatchStrategy.GLOBAL_SIMILAR]
    print("PASS: global similarity")


def test_thresholds_come_from_config():
    strict = _engine(nearby_threshold=0.95, global_threshold=0.95)
    result = strict.reconcile(["ABC", "DEF"], _records(("u1", "ABCDEF")))
    # Too weak for the content steps, still close enough for the positional fallback
    assert result.strategies[0] == MatchStrategy.POSITION
    assert result.identifiers[0] == "u1"
    print("PASS: thresholds from config")


def test_authorship():
    engine = _engine()
    previous = [
        LineRecord(identifier="u1", line_number=1, content="Foo", original_author="bob"),
        LineRecord(identifier="u2", line_number=2, content="Same", original_author="bob"),
    ]
    result = engine.reconcile(["Foo!", "Same", "Brand new"], previous, user_id="alice")
    foo, same, fresh = result.lines

    assert foo.identifier == "u1" and foo.edited_by == ["alice"]
    assert same.identifier == "u2" and same.edited_by == []
    assert fresh.original_author == "alice"
    assert fresh.edited_by == []
    print("PASS: authorship")


def test_rich_content_kept_when_text_unchanged():
    engine = _engine()
    delta = {"ops": [{"insert": "Hello", "attributes": {"bold": True}}, {"insert": "\n"}]}
    previous = [LineRecord(identifier="u1", line_number=1, content=delta)]
    result = engine.reconcile(["Hello"], previous)
    assert result.identifiers == ["u1"]
    assert result.lines[0].content == delta
    print("PASS: rich content kept")


def test_failing_strategy_falls_back_to_fresh_identifier():
    engine = _engine()

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    engine._match_content = boom
    result = engine.reconcile(["Foo"], _records(("u1", "Foo")))
    assert result.identifiers == ["new-1"]
    assert result.strategies == [MatchStrategy.ERROR_FALLBACK]
    print("PASS: error fallback")


def test_failing_cascade_falls_back_to_fresh_identifier():
    engine = _engine()

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    # Blank lines skip the content pass and go straight to the full cascade
    engine._find = boom
    result = engine.reconcile([""], _records(("u1", "")))
    assert result.identifiers == ["new-1"]
    assert result.strategies == [MatchStrategy.ERROR_FALLBACK]
    assert result.stats.regenerated == 1
    print("PASS: error fallback in the full cascade")


def test_find_best_match_single_line():
    engine = _engine()
    previous = _records(("u1", "Foo"), ("u2", ""))
    match = engine.find_best_match("Foo", 0, previous, set())
    assert match.index == 0 and match.strategy == MatchStrategy.EXACT_CONTENT

    # Blank target over a blank slot in a grown document: provably new
    assert engine.find_best_match("", 1, previous, set()) is None
    # Same document size: the blank line is the old one
    match = engine.find_best_match("", 1, previous, set(), target_count=2)
    assert match.index == 1 and match.strategy == MatchStrategy.EMPTY_LINE

    assert engine.find_best_match("Foo", 0, previous, {0}, position_fallback=False) is None
    print("PASS: find_best_match")


def test_uniqueness_enforcer():
    assert find_duplicates(["a", "b", "a", None, "b", "c"]) == [2, 4]

    enforcer = UniquenessEnforcer(_ids("dup"))
    records = _records(("x", "1"), ("x", "2"), ("y", "3"), ("x", "4"))
    repaired = enforcer.enforce_records(records)
    assert repaired == [1, 3]
    assert [r.identifier for r in records] == ["x", "dup-1", "y", "dup-2"]
    assert enforcer.enforce_records(records) == []
    print("PASS: uniqueness enforcer")


if __name__ == "__main__":
    tests = [
        test_unchanged_content_is_idempotent,
        test_split_keeps_head_identifier,
        test_merge_keeps_first_identifier,
        test_enter_at_zero_special_case,
        test_enter_at_zero_without_cursor_record,
        test_enter_special_case_ignored_when_shape_does_not_fit,
        test_enter_at_zero_finds_non_adjacent_source,
        test_scene_end_to_end_contents,
        test_new_blank_line_never_reuses_identifier,
        test_duplicates_in_previous_are_repaired,
        test_content_map_lookup,
        test_adapter_identifier_fallback,
        test_position_fallback,
        test_global_similarity_outside_window,
        test_thresholds_come_from_config,
        test_authorship,
        test_rich_content_kept_when_text_unchanged,
        test_failing_strategy_falls_back_to_fresh_identifier,
        test_failing_cascade_falls_back_to_fresh_identifier,
        test_find_best_match_single_line,
        test_uniqueness_enforcer,
    ]

    passed = 0
    failed = 0
    for t in tests:
        try:
            t()
            passed += 1
        except Exception as e:
            print(f"FAIL: {t.__name__}: {e}")
            failed += 1

    print(f"\n{'=' * 50}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed > 0:
        sys.exit(1)
