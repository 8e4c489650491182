"""
Tests for linetrack.similarity and linetrack.content.

Run: python3 test_similarity.py
"""

import sys

sys.path.insert(0, '.')

from linetrack.content import content_hash, is_content_empty, is_stringified_delta, plain_text
from linetrack.similarity import text_similarity

SAMPLES = ["a", "Scene 1", "INT. KITCHEN - NIGHT", "   ", "The quick brown fox jumps over the lazy dog"]


def test_identical_and_empty_bounds():
    for text in SAMPLES:
        assert text_similarity(text, text) == 1
        assert text_similarity(text, "") == 0
        assert text_similarity("", text) == 0
    print("PASS: identical text scores 1, empty text scores 0")


def test_long_prefix_rules():
    # Shared prefix covering most of the shorter line
    assert text_similarity("The quick brown fox", "The quick brown cat") == 0.9

    # Prefix of exactly 10 characters, well under 70% of either line
    a = "abcdefghij" + "X" * 20
    b = "abcdefghij" + "Y" * 20
    assert abs(text_similarity(a, b) - (0.7 + 0.3 * 10 / 30)) < 1e-9
    print("PASS: long lines scored by common prefix")


def test_prefix_rule_needs_both_lines_long():
    # "Scene 1" is too short for the prefix rule: falls back to positional comparison
    assert abs(text_similarity("Scene 1", "Scene 2") - 6 / 7) < 1e-9
    print("PASS: prefix rule only applies to long lines")


def test_containment_and_positional():
    assert abs(text_similarity("Foo", "FooBar") - 0.7) < 1e-9
    assert abs(text_similarity("Bar", "FooBar") - 0.7) < 1e-9
    assert abs(text_similarity("abc", "abd") - 2 / 3) < 1e-9
    assert text_similarity("abc", "xyz") == 0
    print("PASS: containment and positional scores")


def test_scores_stay_in_range():
    for a in SAMPLES:
        for b in SAMPLES:
            score = text_similarity(a, b)
            assert 0 <= score <= 1, (a, b, score)
            assert score == text_similarity(b, a)
    print("PASS: scores are symmetric and within [0, 1]")


def test_plain_text_views():
    assert plain_text(None) == ""
    assert plain_text("Hello") == "Hello"
    assert plain_text({"ops": [{"insert": "Hel"}, {"insert": "lo", "attributes": {"bold": True}}, {"insert": "\n"}]}) == "Hello"
    assert plain_text('{"ops": [{"insert": "Hi\\n"}]}') == "Hi"
    assert plain_text({"ops": [{"insert": {"image": "x.png"}}]}) == "[embedded content]"
    assert plain_text(42) == "42"
    print("PASS: plain text extraction")


def test_stringified_delta_detection():
    assert is_stringified_delta('{"ops": []}')
    assert not is_stringified_delta('{"ops": broken')
    assert not is_stringified_delta("ops")
    assert not is_stringified_delta({"ops": []})
    print("PASS: stringified delta detection")


def test_emptiness_and_hash():
    assert is_content_empty("")
    assert is_content_empty("  \t")
    assert is_content_empty({"ops": [{"insert": "\n"}]})
    assert not is_content_empty("x")
    assert content_hash("  Scene 1 ") == content_hash("Scene 1")
    assert content_hash("Scene 1") != content_hash("Scene 2")
    print("PASS: emptiness and content hash")


if __name__ == "__main__":
    tests = [
        test_identical_and_empty_bounds,
        test_long_prefix_rules,
        test_prefix_rule_needs_both_lines_long,
        test_containment_and_positional,
        test_scores_stay_in_range,
        test_plain_text_views,
        test_stringified_delta_detection,
        test_emptiness_and_hash,
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
