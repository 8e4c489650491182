"""
Tests for linetrack.diff: identifier-paired line diffs and review summaries.

Run: python3 test_diff.py
"""

import sys

sys.path.insert(0, '.')

from linetrack.diff import (
    ChangeType,
    SegmentType,
    detect_formatting_changes,
    generate_diff,
    generate_diff_summary,
    generate_line_diff,
    group_consecutive_changes,
)
from linetrack.models import LineRecord


def _line(identifier, number, content):
    return LineRecord(identifier=identifier, line_number=number, content=content)


def _joined(segments, *types):
    return "".join(s.content for s in segments if s.type in types)


def test_line_diff_segments_rebuild_both_sides():
    diff = generate_line_diff("The cat sat", "The dog sat")
    assert diff.change_type == ChangeType.MODIFICATION
    assert _joined(diff.segments, SegmentType.UNCHANGED, SegmentType.DELETION) == "The cat sat"
    assert _joined(diff.segments, SegmentType.UNCHANGED, SegmentType.ADDITION) == "The dog sat"
    assert any(s.type == SegmentType.DELETION for s in diff.segments)
    assert any(s.type == SegmentType.ADDITION for s in diff.segments)
    print("PASS: segments rebuild original and suggestion")


def test_line_diff_change_types():
    assert generate_line_diff("same", "same").change_type == ChangeType.UNCHANGED
    assert generate_line_diff("", "").segments == []

    added = generate_line_diff("", "New line")
    assert added.change_type == ChangeType.ADDITION
    assert [(s.type, s.content) for s in added.segments] == [(SegmentType.ADDITION, "New line")]

    removed = generate_line_diff("Old line", "")
    assert removed.change_type == ChangeType.DELETION
    assert [(s.type, s.content) for s in removed.segments] == [(SegmentType.DELETION, "Old line")]
    print("PASS: change types")


def test_diff_pairs_by_identifier_not_position():
    original = [_line("u1", 1, "Scene 1"), _line("u2", 2, "Scene 2")]
    # A new line inserted at the top shifts every position
    suggested = [_line("n1", 1, "Prologue"), _line("u1", 2, "Scene 1"), _line("u2", 3, "Scene 2")]
    diff_map = generate_diff(original, suggested)

    assert diff_map["u1"].change_type == ChangeType.UNCHANGED
    assert diff_map["u2"].change_type == ChangeType.UNCHANGED
    assert diff_map["n1"].change_type == ChangeType.ADDITION
    print("PASS: lines paired by identifier")


def test_summary_counts_and_order():
    original = [_line("u1", 1, "Alpha"), _line("u2", 2, "Beta"), _line("u3", 3, "Gamma")]
    suggested = [
        _line("u1", 1, "Alpha"),
        _line("u3", 2, "Gamma!"),
        _line("n1", 3, "Delta"),
    ]
    summary = generate_diff_summary(original, suggested)

    assert summary.additions == 1
    assert summary.deletions == 1
    assert summary.modifications == 1
    assert summary.total_changes == 3
    assert [line.identifier for line in summary.changed_lines] == ["u2", "u3", "n1"]
    assert summary.changed_lines[0].suggested_content == ""
    assert summary.describe() == "1 addition, 1 deletion, 1 modification"
    print("PASS: summary")


def test_summary_reads_rich_content():
    rich = {"ops": [{"insert": "Hello", "attributes": {"bold": True}}, {"insert": "\n"}]}
    summary = generate_diff_summary([_line("u1", 1, rich)], [_line("u1", 1, "Hello")])
    assert summary.total_changes == 0
    assert summary.describe() == "No changes"
    print("PASS: rich and plain text compare by text")


def test_group_consecutive_changes():
    original = [_line(f"u{i}", i, f"Line {i}") for i in range(1, 7)]
    suggested = [
        _line(line.identifier, line.line_number, line.content + "!" if line.line_number in (2, 3, 6) else line.content)
        for line in original
    ]
    summary = generate_diff_summary(original, suggested)
    groups = group_consecutive_changes(summary.changed_lines)

    assert [[line.line_number for line in group] for group in groups] == [[2, 3], [6]]
    assert group_consecutive_changes([]) == []
    print("PASS: consecutive changes grouped")


def test_detect_formatting_changes():
    plain = "Hello"
    bold = {"ops": [{"insert": "Hello", "attributes": {"bold": True}}]}
    italic = {"ops": [{"insert": "Hello", "attributes": {"italic": True}}]}

    assert not detect_formatting_changes(plain, "Hello there")
    assert detect_formatting_changes(plain, bold)
    assert detect_formatting_changes(bold, italic)
    assert not detect_formatting_changes(bold, {"ops": [{"insert": "Hello", "attributes": {"bold": True}}]})
    assert detect_formatting_changes('{"ops": [{"insert": "Hello"}]}', bold)
    print("PASS: formatting change detection")


if __name__ == "__main__":
    tests = [
        test_line_diff_segments_rebuild_both_sides,
        test_line_diff_change_types,
        test_diff_pairs_by_identifier_not_position,
        test_summary_counts_and_order,
        test_summary_reads_rich_content,
        test_group_consecutive_changes,
        test_detect_formatting_changes,
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
