import itertools

import pytest

import affinity_rec.engine as engine_module
from affinity_rec.cache import ProfileCache
from affinity_rec.catalog import CatalogItem, RatedItem
from affinity_rec.engine import RecommendationEngine, diversify
from affinity_rec.errors import RecommendationTimeout, StrategyFailure, ValidationError
from affinity_rec.recommender import (
    AttributeContentStrategy,
    Recommendation,
    StrategyKind,
    make_strategy,
)
from affinity_rec.utils import Deadline
from affinity_rec.weights import DEFAULT_SCORING_WEIGHTS


def _rec(item_id, score=5.0, genres=(), contributor=None):
    return Recommendation(item_id=item_id, title=item_id.upper(), score=score, reason="test",
                          genres=genres, contributor=contributor)


class StubStrategy:
    """Returns canned recommendations, or raises."""

    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.calls = 0

    def describe(self):
        return {"name": "Stub", "description": "canned", "factors": []}

    def score(self, candidate, ratings, profile):
        return 5.0

    def recommend(self, ratings, pool, profile, preferences, deadline=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.results)


@pytest.fixture
def attribute():
    return AttributeContentStrategy(weights=DEFAULT_SCORING_WEIGHTS)


@pytest.fixture
def engine(attribute):
    return RecommendationEngine(attribute)


def test_generate_recommendations_ranks_unrated_pool(engine, ratings, pool):
    results = engine.generate_recommendations(ratings, pool)

    assert [r.item_id for r in results] == ["m3", "m4", "m5"]
    assert [r.rank for r in results] == [1, 2, 3]
    assert results[0].score == pytest.approx(7.875)
    assert results[1].score == pytest.approx(5.7)
    assert results[2].score == pytest.approx(1.44)
    assert results[0].reason == "You like Sci-Fi movies, You enjoyed other Ridley Scott films"


def test_rated_item_in_pool_is_excluded(engine):
    ratings = [RatedItem("m1", "", 9), RatedItem("m2", "", 8)]
    pool = [CatalogItem("m1", ""), CatalogItem("m3", "", genres=("Action",), contributor="X")]

    results = engine.generate_recommendations(ratings, pool)

    assert [r.item_id for r in results] == ["m3"]


@pytest.mark.parametrize("strategy", [None, StubStrategy()])
def test_empty_pool_fails_with_or_without_strategy(ratings, strategy):
    with pytest.raises(ValidationError):
        RecommendationEngine(strategy).generate_recommendations(ratings, [])


def test_generate_recommendations_is_idempotent(engine, ratings, pool):
    first = engine.generate_recommendations(ratings, pool, {"limit": 3})
    second = engine.generate_recommendations(ratings, pool, {"limit": 3})
    assert first == second


def test_missing_strategy_is_a_validation_error(ratings, pool):
    with pytest.raises(ValidationError, match="No recommendation strategy set"):
        RecommendationEngine().generate_recommendations(ratings, pool)


@pytest.mark.parametrize(
    "bad_ratings, bad_pool",
    [
        ([], None),
        (None, None),
        ("ok", []),
    ],
)
def test_empty_inputs_are_rejected(engine, ratings, pool, bad_ratings, bad_pool):
    user_ratings = ratings if bad_ratings == "ok" else bad_ratings
    candidates = pool if bad_pool is None else bad_pool
    with pytest.raises(ValidationError):
        engine.generate_recommendations(user_ratings, candidates)


def test_out_of_range_rating_is_rejected(engine, pool):
    with pytest.raises(ValidationError):
        engine.generate_recommendations([RatedItem("m1", "Alien", 11)], pool)


@pytest.mark.parametrize("limit", [0, -3, True, "5", 2.5])
def test_invalid_limit_is_rejected(engine, ratings, pool, limit):
    with pytest.raises(ValidationError):
        engine.generate_recommendations(ratings, pool, {"limit": limit})


def test_limit_truncates(engine, ratings, pool):
    results = engine.generate_recommendations(ratings, pool, {"limit": 2})
    assert [r.item_id for r in results] == ["m3", "m4"]


def test_ranking_drops_rated_and_duplicates_and_clamps(ratings, pool):
    stub = StubStrategy(results=[_rec("m3", 12.0), _rec("m1", 9.0), _rec("m4", 6.0), _rec("m3", 4.0),
                                 _rec("m5", -2.0)])

    results = RecommendationEngine(stub).generate_recommendations(ratings, pool)

    assert [r.item_id for r in results] == ["m3", "m4", "m5"]
    assert results[0].score == 10.0
    assert results[-1].score == 0.0
    assert [r.rank for r in results] == [1, 2, 3]


def test_equal_scores_keep_strategy_order(ratings, pool):
    stub = StubStrategy(results=[_rec("m5", 7.0), _rec("m3", 7.0), _rec("m4", 7.0)])

    results = RecommendationEngine(stub).generate_recommendations(ratings, pool)

    assert [r.item_id for r in results] == ["m5", "m3", "m4"]


def test_unexpected_strategy_error_is_wrapped(ratings, pool, caplog):
    stub = StubStrategy(error=KeyError("genre"))

    with pytest.raises(StrategyFailure) as exc_info:
        RecommendationEngine(stub).generate_recommendations(ratings, pool)

    assert exc_info.value.stage == "scoring"
    assert isinstance(exc_info.value.__cause__, KeyError)
    assert exc_info.value.cause is exc_info.value.__cause__
    assert "scoring" in caplog.text


def test_timeout_propagates_unwrapped(ratings, pool):
    stub = StubStrategy(error=RecommendationTimeout("peer scan", 6.0, 5.0))

    with pytest.raises(RecommendationTimeout):
        RecommendationEngine(stub).generate_recommendations(ratings, pool)


def test_with_strategy_leaves_original_untouched(attribute, ratings, pool):
    base = RecommendationEngine()
    configured = base.with_strategy(attribute)

    assert base.strategy is None
    assert configured.strategy is attribute
    assert configured.algorithm_info()["name"] == "Attribute/Content Affinity"


def test_per_call_strategy_overrides_default(engine, ratings, pool):
    stub = StubStrategy(results=[_rec("m5", 9.0)])

    results = engine.generate_recommendations(ratings, pool, strategy=stub)

    assert [r.item_id for r in results] == ["m5"]
    assert stub.calls == 1
    assert engine.algorithm_info(stub)["name"] == "Stub"


def test_catalog_join_supplies_metadata_for_rated_items(attribute, ratings, rated_metadata):
    candidates = [CatalogItem("m3", "Blade Runner", year=1982, genres=("Sci-Fi",), contributor="Ridley Scott")]

    joined = RecommendationEngine(attribute, catalog=rated_metadata).generate_recommendations(ratings, candidates)
    cold = RecommendationEngine(attribute).generate_recommendations(ratings, candidates)

    assert joined[0].score == pytest.approx(7.875)
    # Without metadata for the rated items only content overlap applies
    assert cold[0].score == pytest.approx(0.0)
    assert cold[0].reason == "Potential new discovery"


def test_profile_cache_is_used_when_user_and_version_given(attribute, ratings, pool):
    cache = ProfileCache(max_size=4, ttl_seconds=60)
    engine = RecommendationEngine(attribute, profile_cache=cache)
    prefs = {"user_id": "alice", "ratings_version": 1}

    first = engine.generate_recommendations(ratings, pool, prefs)
    second = engine.generate_recommendations(ratings, pool, prefs)
    engine.generate_recommendations(ratings, pool)

    assert first == second
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1


# -- views -------------------------------------------------------------------------


def test_by_genre_is_case_insensitive_substring(engine, ratings, pool):
    results = engine.by_genre(ratings, pool, "sci")
    assert [r.item_id for r in results] == ["m3"]


def test_filtered_view_joins_rated_items_against_full_pool(engine, ratings, pool):
    # Alien is not a thriller, but its Sci-Fi rating still informs Blade Runner's score
    results = engine.by_genre(ratings, pool, "Thriller")

    assert [r.item_id for r in results] == ["m3", "m4"]
    assert results[0].score == pytest.approx(7.875)


def test_by_contributor_and_by_decade(engine, ratings, pool):
    assert [r.item_id for r in engine.by_contributor(ratings, pool, "mann")] == ["m4"]
    assert [r.item_id for r in engine.by_decade(ratings, pool, 2010)] == ["m5"]


def test_empty_view_returns_empty_list(engine, ratings, pool):
    assert engine.by_genre(ratings, pool, "Western") == []
    assert engine.by_decade(ratings, pool, 1920) == []


def test_view_still_validates_inputs(engine, ratings):
    with pytest.raises(ValidationError):
        engine.by_genre(ratings, [], "Drama")


def test_view_limit_defaults_to_five(engine, ratings):
    pool = [CatalogItem(f"c{i}", f"Film {i}", genres=("Drama",)) for i in range(8)]
    assert len(engine.by_genre(ratings, pool, "drama")) == 5


# -- diversity ------------------------------------------------------------------------


def test_diversify_caps_genre_repeats():
    recs = [_rec(f"a{i}", 9 - i, genres=("Action",), contributor=f"Dir {i}") for i in range(5)]
    recs.append(_rec("d1", 3.0, genres=("Drama",), contributor="Dir X"))

    results = diversify(recs, limit=10)

    assert [r.item_id for r in results] == ["a0", "a1", "a2", "d1"]
    assert [r.rank for r in results] == [1, 2, 3, 4]


def test_diversify_caps_contributor_repeats_and_unknown():
    recs = [
        _rec("k1", genres=("Drama",), contributor="Kurosawa"),
        _rec("k2", genres=("War",), contributor="Kurosawa"),
        _rec("k3", genres=("Crime",), contributor="Kurosawa"),
        _rec("u1", genres=("Horror",)),
        _rec("u2", genres=("Comedy",)),
        _rec("u3", genres=("Musical",)),
    ]

    results = diversify(recs, limit=10)

    assert [r.item_id for r in results] == ["k1", "k2", "u1", "u2"]


def test_diversify_respects_limit():
    recs = [_rec(f"x{i}", genres=(f"G{i}",), contributor=f"D{i}") for i in range(6)]
    assert len(diversify(recs, limit=4)) == 4


def test_diverse_recommendations_widen_then_cap(engine, ratings, rated_metadata):
    pool = rated_metadata + [
        CatalogItem(f"s{i}", f"Space {i}", genres=("Sci-Fi",), contributor=f"Dir {i}") for i in range(5)
    ]

    results = engine.diverse_recommendations(ratings, pool, limit=5)

    assert len(results) == 3
    assert all(r.genres == ("Sci-Fi",) for r in results)
    assert [r.rank for r in results] == [1, 2, 3]


# -- peers -------------------------------------------------------------------------------


@pytest.fixture
def target():
    return [RatedItem("a", "A", 8), RatedItem("b", "B", 6), RatedItem("c", "C", 9), RatedItem("d", "D", 4)]


@pytest.fixture
def peer_corpus():
    return [
        [RatedItem("a", "A", 9), RatedItem("b", "B", 7), RatedItem("c", "C", 10), RatedItem("d", "D", 5),
         RatedItem("e", "E", 9)],
        [RatedItem("a", "A", 8), RatedItem("b", "B", 6), RatedItem("c", "C", 9), RatedItem("d", "D", 4),
         RatedItem("e", "E", 7), RatedItem("g", "G", 8)],
    ]


def test_peer_recommendations_rank_endorsed_items(target, peer_corpus):
    pool = [CatalogItem("e", "Eraserhead"), CatalogItem("g", "Gummo")]

    results = RecommendationEngine().peer_recommendations(target, pool, peer_corpus)

    assert [(r.item_id, r.rank) for r in results] == [("e", 1), ("g", 2)]
    assert results[0].reason.startswith("peer-endorsed")


def test_peer_recommendations_fall_back_with_single_peer(engine, target, peer_corpus):
    pool = [CatalogItem("e", "Eraserhead"), CatalogItem("a", "A")]

    results = engine.peer_recommendations(target, pool, peer_corpus[:1])

    assert [r.item_id for r in results] == ["e"]
    assert not results[0].reason.startswith("peer-endorsed")


def test_peer_scan_timeout_reaches_caller(monkeypatch, target, peer_corpus):
    ticks = itertools.chain([0.0], itertools.repeat(10.0))
    monkeypatch.setattr(engine_module, "Deadline", lambda seconds: Deadline(seconds, clock=lambda: next(ticks)))

    with pytest.raises(RecommendationTimeout):
        RecommendationEngine().peer_recommendations(
            target, [CatalogItem("e", "E")], peer_corpus, deadline_seconds=1.0
        )


@pytest.mark.parametrize("kind", list(StrategyKind))
def test_results_never_include_rated_items(kind, target, peer_corpus):
    pool = [CatalogItem(i, i.upper(), genres=("Drama",)) for i in "abcdefgh"]
    engine = RecommendationEngine(make_strategy(kind, peer_corpus=peer_corpus))

    results = engine.generate_recommendations(target, pool)

    rated = {r.item_id for r in target}
    assert results
    assert not rated & {r.item_id for r in results}
    assert [r.rank for r in results] == list(range(1, len(results) + 1))
    assert all(0 <= r.score <= 10 for r in results)


def test_filtered_view_with_peer_strategy_stays_in_view(target, peer_corpus):
    pool = [
        CatalogItem("e", "Eraserhead", genres=("Comedy",)),
        CatalogItem("g", "Gummo", genres=("Horror",)),
    ]
    engine = RecommendationEngine(make_strategy(StrategyKind.PEER, peer_corpus=peer_corpus))

    results = engine.by_genre(target, pool, "Horror")

    assert [r.item_id for r in results] == ["g"]
    assert results[0].reason.startswith("peer-endorsed")
