import pytest

from affinity_rec.catalog import RatedItem
from affinity_rec.similarity import jaccard, pearson_correlation, tokenize, user_similarity


def _ratings(**values):
    return [RatedItem(item_id, item_id.upper(), rating) for item_id, rating in values.items()]


def test_tokenize_lowercases_and_skips_empty_text():
    assert tokenize("The Dark Knight", None, "") == {"the", "dark", "knight"}


def test_jaccard():
    assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
    assert jaccard(set(), set()) == 0.0
    assert jaccard({"a"}, set()) == 0.0


def test_pearson_perfect_and_inverse():
    assert pearson_correlation([(8, 9), (6, 7), (9, 10), (4, 5)]) == pytest.approx(1.0)
    assert pearson_correlation([(1, 10), (5, 6), (9, 2)]) == pytest.approx(-1.0)


def test_pearson_known_value():
    # x = [1, 2, 3], y = [1, 3, 2]: numerator 1.0, variances 2.0 and 2.0
    assert pearson_correlation([(1, 1), (2, 3), (3, 2)]) == pytest.approx(0.5)


def test_pearson_degenerate_inputs_are_zero():
    assert pearson_correlation([]) == 0.0
    # Constant ratings on one side: zero variance
    assert pearson_correlation([(7, 1), (7, 5), (7, 9)]) == 0.0


def test_user_similarity_needs_min_common_items():
    target = _ratings(a=8, b=6, c=9)
    peer = _ratings(a=9, b=7, z=10)

    assert user_similarity(target, peer) == 0.0
    assert user_similarity(target, peer, min_common=2) == pytest.approx(1.0)


def test_user_similarity_is_symmetric():
    target = _ratings(a=8, b=3, c=9, d=5, e=7)
    peer = _ratings(e=2, d=6, c=8, b=4, a=10, x=1)

    forward = user_similarity(target, peer)
    backward = user_similarity(peer, target)

    assert forward == backward
    assert -1.0 <= forward <= 1.0


def test_user_similarity_accepts_plain_dicts():
    assert user_similarity({"a": 1, "b": 2, "c": 3}, {"a": 1, "b": 3, "c": 2}) == pytest.approx(0.5)
