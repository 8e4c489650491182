LONG_TEXT_LENGTH = 10
PREFIX_RATIO = 0.7
MIN_PREFIX = 10


def _common_prefix_length(a: str, b: str) -> int:
    limit = min(len(a), len(b))
    prefix_len = 0
    while prefix_len < limit and a[prefix_len] == b[prefix_len]:
        prefix_len += 1
    return prefix_len


def text_similarity(a: str, b: str) -> float:
    """
    Scores how alike two line texts are, from 0.0 to 1.0.

    1. Identical text scores 1, empty text scores 0.
    2. Long lines sharing most of a prefix score 0.9; a shorter shared prefix of at
       least 10 characters scores between 0.7 and 1.0.
    3. Containment scores 0.5 + 0.4 * (shorter / longer).
    4. Otherwise, the share of equal characters at equal positions.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    shorter = min(len(a), len(b))
    longer = max(len(a), len(b))

    if len(a) > LONG_TEXT_LENGTH and len(b) > LONG_TEXT_LENGTH:
        prefix_len = _common_prefix_length(a, b)
        if prefix_len >= shorter * PREFIX_RATIO:
            return 0.9
        if prefix_len >= MIN_PREFIX:
            return 0.7 + (prefix_len / longer) * 0.3

    if b in a or a in b:
        return 0.5 + (shorter / longer) * 0.4

    same_chars = sum(1 for x, y in zip(a, b) if x == y)
    return same_chars / longer
