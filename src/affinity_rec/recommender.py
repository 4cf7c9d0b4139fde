from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence

from .catalog import CatalogItem, RatedItem, index_by_id
from .profile import AffinityProfile
from .similarity import jaccard, tokenize, user_similarity
from .utils import Deadline, clamp
from .weights import (
    CONTENT_ONLY_WEIGHTS,
    DEFAULT_SCORING_WEIGHTS,
    ScoringWeights,
    load_scoring_weights,
)
from .config import (
    MIN_RATING,
    MAX_RATING,
    DEFAULT_LIMIT,
    HIGH_RATING_THRESHOLD,
    NEUTRAL_CONTENT_SCORE,
    HIGHLY_RATED_BASELINE,
    SCORE_TIER_STRONG,
    SCORE_TIER_GOOD,
    PEER_MIN_COMMON_ITEMS,
    PEER_SIMILARITY_THRESHOLD,
    PEER_MAX_NEIGHBORS,
    PEER_ENDORSE_MIN_RATING,
    PEER_MIN_CORPUS_SIZE,
    PEER_MIN_ENDORSEMENT,
    PEER_CORPUS_MAX,
    PEER_DEADLINE_SECONDS,
)

logger = logging.getLogger(__name__)


@dataclass
class Recommendation:
    item_id: str
    title: str
    score: float
    reason: str
    year: int | None = None
    genres: tuple[str, ...] = field(default_factory=tuple)
    contributor: str | None = None
    rank: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "title": self.title,
            "year": self.year,
            "genres": list(self.genres),
            "contributor": self.contributor,
            "score": round(self.score, 2),
            "reason": self.reason,
            "rank": self.rank,
        }


def _recommendation_for(item: CatalogItem, score: float, reason: str) -> Recommendation:
    return Recommendation(
        item_id=item.item_id,
        title=item.title,
        score=score,
        reason=reason,
        year=item.year,
        genres=item.genres,
        contributor=item.contributor,
    )


class RecommendationStrategy(Protocol):
    """What the engine needs from a scoring strategy."""

    def score(
        self,
        candidate: CatalogItem,
        ratings: Sequence[RatedItem],
        profile: AffinityProfile,
    ) -> float:
        ...

    def describe(self) -> dict[str, Any]:
        ...

    def recommend(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        profile: AffinityProfile,
        preferences: Mapping[str, Any],
        deadline: Deadline | None = None,
    ) -> list[Recommendation]:
        ...


LikedTokens = list[tuple[set[str], int]]


class AttributeContentStrategy:
    """
    Score candidates by how well they match the user's attribute affinities.

    Per-candidate score is a weighted blend of whichever terms apply:
    genre, contributor, decade and content overlap with liked titles. The
    blend is renormalized by the applicable weights, then mixed with the
    candidate's baseline rating as a prior and clamped to [0, 10].
    """

    FACTOR_LABELS = {
        'genre': "Genre affinity",
        'contributor': "Contributor affinity",
        'decade': "Decade affinity",
        'content': "Content overlap with liked titles",
    }

    def __init__(
        self,
        weights: ScoringWeights | None = None,
        weights_path: str | Path | None = None,
        name: str = "Attribute/Content Affinity",
        description: str = (
            "Blends the user's average rating per genre, contributor and decade "
            "with text overlap against highly rated titles"
        ),
    ):
        self.weights = weights or load_scoring_weights(weights_path) or DEFAULT_SCORING_WEIGHTS
        self.name = name
        self.description = description

    def describe(self) -> dict[str, Any]:
        factors = [label for term, label in self.FACTOR_LABELS.items() if self.weights.term(term) > 0]
        if self.weights.prior > 0:
            factors.append("Baseline rating prior")
        return {"name": self.name, "description": self.description, "factors": factors}

    @staticmethod
    def _liked_tokens(ratings: Iterable[RatedItem]) -> LikedTokens:
        return [(tokenize(r.title), r.rating) for r in ratings if r.rating >= HIGH_RATING_THRESHOLD]

    @staticmethod
    def _content_overlap(candidate: CatalogItem, liked: LikedTokens) -> float:
        """
        Average of Jaccard(candidate text, liked title) * rating over liked items.

        Neutral when the user has no highly rated items.
        """
        if not liked:
            return NEUTRAL_CONTENT_SCORE

        candidate_tokens = tokenize(candidate.title, " ".join(candidate.genres), candidate.synopsis)
        total = 0.0
        count = 0
        for rated_tokens, rating in liked:
            if not (candidate_tokens or rated_tokens):
                continue
            total += jaccard(candidate_tokens, rated_tokens) * rating
            count += 1

        return total / count if count else NEUTRAL_CONTENT_SCORE

    def _applicable_terms(
        self,
        candidate: CatalogItem,
        profile: AffinityProfile,
        liked: LikedTokens,
    ) -> list[tuple[float, float]]:
        """(weight, value) for every term that has signal for this candidate."""
        terms: list[tuple[float, float]] = []

        matched = [profile.genre_affinity[g] for g in candidate.genres if g in profile.genre_affinity]
        if matched and self.weights.genre > 0:
            terms.append((self.weights.genre, sum(matched) / len(matched)))

        contributor = candidate.contributor
        if contributor and contributor in profile.contributor_affinity and self.weights.contributor > 0:
            terms.append((self.weights.contributor, profile.contributor_affinity[contributor]))

        decade = candidate.decade
        if decade is not None and decade in profile.decade_affinity and self.weights.decade > 0:
            terms.append((self.weights.decade, profile.decade_affinity[decade]))

        if self.weights.content > 0:
            terms.append((self.weights.content, self._content_overlap(candidate, liked)))

        return terms

    def _score(self, candidate: CatalogItem, profile: AffinityProfile, liked: LikedTokens) -> float:
        terms = self._applicable_terms(candidate, profile, liked)
        weight_sum = sum(w for w, _ in terms)

        if weight_sum > 0:
            score = sum(w * v for w, v in terms) / weight_sum
        elif candidate.baseline_rating is not None:
            score = candidate.baseline_rating
        else:
            score = profile.overall_average

        # Baseline acts as a prior
        if candidate.baseline_rating is not None:
            prior = self.weights.prior
            score = score * (1 - prior) + candidate.baseline_rating * prior

        return clamp(score, MIN_RATING, MAX_RATING)

    def score(
        self,
        candidate: CatalogItem,
        ratings: Sequence[RatedItem],
        profile: AffinityProfile,
    ) -> float:
        return self._score(candidate, profile, self._liked_tokens(ratings))

    def explain(self, candidate: CatalogItem, profile: AffinityProfile, score: float) -> str:
        """Human-readable reason, most specific signal first."""
        reasons: list[str] = []

        liked_genres = [
            g for g in candidate.genres
            if profile.genre_affinity.get(g, MIN_RATING - 1) >= HIGH_RATING_THRESHOLD
        ]
        if liked_genres:
            reasons.append(f"You like {', '.join(liked_genres)} movies")

        contributor = candidate.contributor
        if contributor and profile.contributor_affinity.get(contributor, MIN_RATING - 1) >= HIGH_RATING_THRESHOLD:
            reasons.append(f"You enjoyed other {contributor} films")

        baseline = candidate.baseline_rating
        if baseline is not None and baseline >= HIGHLY_RATED_BASELINE:
            reasons.append(f"Highly rated ({baseline:.1f}/10)")

        if not reasons:
            if score >= SCORE_TIER_STRONG:
                reasons.append("Strong match based on your preferences")
            elif score >= SCORE_TIER_GOOD:
                reasons.append("Good match for your taste")
            else:
                reasons.append("Potential new discovery")

        return ", ".join(reasons)

    def recommend(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        profile: AffinityProfile,
        preferences: Mapping[str, Any],
        deadline: Deadline | None = None,
    ) -> list[Recommendation]:
        """Score every unrated candidate in the pool (unranked)."""
        rated = {r.item_id for r in ratings}
        liked = self._liked_tokens(ratings)

        results = []
        for candidate in pool:
            if candidate.item_id in rated:
                continue
            score = self._score(candidate, profile, liked)
            results.append(_recommendation_for(candidate, score, self.explain(candidate, profile, score)))

        logger.debug(f"{self.name}: scored {len(results)} of {len(pool)} candidates")
        return results


@dataclass
class PeerMatch:
    """A peer whose ratings correlate with the target user's."""
    index: int
    similarity: float
    ratings: list[RatedItem]


@dataclass
class _PeerCandidate:
    item_id: str
    title: str
    average: float
    count: float  # accumulated similarity

    @classmethod
    def seed(cls, rating: RatedItem, similarity: float) -> "_PeerCandidate":
        # The first endorsement is scaled by the peer's similarity
        return cls(rating.item_id, rating.title, average=rating.rating * similarity, count=similarity)

    def add(self, rating: float, similarity: float) -> None:
        self.average = (self.average * self.count + rating * similarity) / (self.count + similarity)
        self.count += similarity


class PeerCorrelationStrategy:
    """
    Collaborative filtering over a corpus of other users' rating vectors.

    Finds peers whose ratings correlate (Pearson) with the target user's and
    recommends unrated items they rated highly, weighted by similarity. An
    item needs an accumulated similarity of at least `min_endorsement` to be
    recommended. With fewer than two peers there is nothing to correlate
    against, so the fallback strategy handles the request instead.

    Set `preferences["restrict_to_pool"]` to only emit items in the pool.
    """

    name = "Peer Correlation"
    description = "Recommends items highly rated by users whose rating patterns correlate with yours"

    def __init__(
        self,
        peer_corpus: Iterable[Iterable[RatedItem]],
        fallback: RecommendationStrategy | None = None,
        min_common: int = PEER_MIN_COMMON_ITEMS,
        similarity_threshold: float = PEER_SIMILARITY_THRESHOLD,
        max_neighbors: int = PEER_MAX_NEIGHBORS,
        endorse_min_rating: int = PEER_ENDORSE_MIN_RATING,
        min_endorsement: float = PEER_MIN_ENDORSEMENT,
        corpus_max: int = PEER_CORPUS_MAX,
    ):
        corpus = [list(peer) for peer in peer_corpus]
        if len(corpus) > corpus_max:
            logger.warning(f"Peer corpus has {len(corpus)} members; only the first {corpus_max} are scanned")
            corpus = corpus[:corpus_max]

        self.peer_corpus = corpus
        self.fallback = fallback or AttributeContentStrategy()
        self.min_common = min_common
        self.similarity_threshold = similarity_threshold
        self.max_neighbors = max_neighbors
        self.endorse_min_rating = endorse_min_rating
        self.min_endorsement = min_endorsement
        # (ratings key, neighbors) of the last completed scan
        self._last_scan: tuple[tuple, list[PeerMatch]] | None = None

    @property
    def has_enough_peers(self) -> bool:
        return len(self.peer_corpus) >= PEER_MIN_CORPUS_SIZE

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "factors": [
                "Pearson correlation with other users",
                f"Peer ratings of {self.endorse_min_rating} or higher",
                "Similarity-weighted average of peer ratings",
            ],
        }

    def find_similar_peers(
        self,
        ratings: Sequence[RatedItem],
        deadline: Deadline | None = None,
    ) -> list[PeerMatch]:
        """Peers with similarity strictly above the threshold, most similar first."""
        target = {r.item_id: r.rating for r in ratings}

        matches = []
        for index, peer in enumerate(self.peer_corpus):
            if deadline is not None:
                deadline.check("peer scan")
            similarity = user_similarity(target, {r.item_id: r.rating for r in peer}, self.min_common)
            if similarity > self.similarity_threshold:
                matches.append(PeerMatch(index=index, similarity=similarity, ratings=peer))

        # Stable sort keeps corpus order among equally similar peers
        matches.sort(key=lambda m: -m.similarity)
        neighbors = matches[:self.max_neighbors]
        logger.debug(f"{len(matches)} of {len(self.peer_corpus)} peers above {self.similarity_threshold}")
        return neighbors

    def _neighbors(self, ratings: Sequence[RatedItem], deadline: Deadline | None) -> list[PeerMatch]:
        """find_similar_peers, reusing the last scan when the ratings are unchanged."""
        key = tuple(sorted((r.item_id, r.rating) for r in ratings))
        last = self._last_scan
        if last is not None and last[0] == key:
            return last[1]

        neighbors = self.find_similar_peers(ratings, deadline)
        self._last_scan = (key, neighbors)
        return neighbors

    def _aggregate(self, ratings: Sequence[RatedItem], neighbors: list[PeerMatch]) -> dict[str, _PeerCandidate]:
        rated = {r.item_id for r in ratings}
        candidates: dict[str, _PeerCandidate] = {}

        for match in neighbors:
            for peer_rating in match.ratings:
                if peer_rating.item_id in rated or peer_rating.rating < self.endorse_min_rating:
                    continue
                entry = candidates.get(peer_rating.item_id)
                if entry is None:
                    candidates[peer_rating.item_id] = _PeerCandidate.seed(peer_rating, match.similarity)
                else:
                    entry.add(peer_rating.rating, match.similarity)

        endorsed = {k: c for k, c in candidates.items() if c.count >= self.min_endorsement}
        if len(endorsed) < len(candidates):
            logger.debug(
                f"Dropped {len(candidates) - len(endorsed)} items with accumulated similarity "
                f"below {self.min_endorsement}"
            )
        return endorsed

    def score(
        self,
        candidate: CatalogItem,
        ratings: Sequence[RatedItem],
        profile: AffinityProfile,
        deadline: Deadline | None = None,
    ) -> float:
        if not self.has_enough_peers:
            return self.fallback.score(candidate, ratings, profile)

        if deadline is None:
            deadline = Deadline(PEER_DEADLINE_SECONDS)
        endorsed = self._aggregate(ratings, self._neighbors(ratings, deadline)).get(candidate.item_id)
        if endorsed is None:
            return self.fallback.score(candidate, ratings, profile)
        return clamp(endorsed.average, MIN_RATING, MAX_RATING)

    def recommend(
        self,
        ratings: Sequence[RatedItem],
        pool: Sequence[CatalogItem],
        profile: AffinityProfile,
        preferences: Mapping[str, Any],
        deadline: Deadline | None = None,
    ) -> list[Recommendation]:
        if not self.has_enough_peers:
            logger.info(
                f"Peer corpus has {len(self.peer_corpus)} member(s); "
                f"falling back to {self.fallback.describe()['name']}"
            )
            return self.fallback.recommend(ratings, pool, profile, preferences, deadline)

        neighbors = self._neighbors(ratings, deadline)
        if not neighbors:
            logger.info("No peers correlate strongly enough; no peer recommendations")
            return []

        pool_index = index_by_id(pool)
        candidates = self._aggregate(ratings, neighbors)
        if preferences.get("restrict_to_pool"):
            candidates = {k: c for k, c in candidates.items() if k in pool_index}

        ranked = sorted(candidates.values(), key=lambda c: -c.average)
        limit = preferences.get("limit", DEFAULT_LIMIT)

        results = []
        for candidate in ranked[:limit]:
            reason = f"peer-endorsed, aggregate similarity = {candidate.count:.1f}"
            score = clamp(candidate.average, MIN_RATING, MAX_RATING)
            item = pool_index.get(candidate.item_id)
            if item is not None:
                results.append(_recommendation_for(item, score, reason))
            else:
                results.append(Recommendation(
                    item_id=candidate.item_id,
                    title=candidate.title,
                    score=score,
                    reason=reason,
                ))

        return results


class StrategyKind(Enum):
    """The closed set of scoring strategies."""

    ATTRIBUTE = "attribute"  # genre/contributor/decade affinity + content overlap
    CONTENT = "content"      # content overlap only
    PEER = "peer"            # Pearson peer correlation


def make_strategy(
    kind: StrategyKind | str,
    peer_corpus: Iterable[Iterable[RatedItem]] | None = None,
    weights: ScoringWeights | None = None,
) -> RecommendationStrategy:
    """Build a strategy by kind. The peer strategy falls back to the attribute one."""
    kind = StrategyKind(kind)

    if kind is StrategyKind.CONTENT:
        return AttributeContentStrategy(
            weights=weights or CONTENT_ONLY_WEIGHTS,
            name="Content Overlap",
            description="Scores candidates by text overlap with the user's highly rated titles",
        )
    attribute = AttributeContentStrategy(weights=weights)
    if kind is StrategyKind.PEER:
        return PeerCorrelationStrategy(peer_corpus or [], fallback=attribute)
    return attribute
