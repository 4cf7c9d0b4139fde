import argparse
import json
import logging
from pathlib import Path

from tqdm import tqdm

from .catalog import CatalogItem, RatedItem, index_by_id
from .engine import RecommendationEngine
from .errors import RecommendationTimeout, StrategyFailure, ValidationError
from .imports import load_imdb_export
from .profile import analyze_preferences, build_profile
from .recommender import Recommendation, StrategyKind, make_strategy
from .similarity import user_similarity
from .config import DEFAULT_LIMIT, PEER_SIMILARITY_THRESHOLD

logger = logging.getLogger(__name__)


def _read_json_list(path: str | Path) -> list:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValidationError(f"{path}: expected a JSON array")
    return data


def _load_ratings(path: str | Path) -> tuple[list[RatedItem], list[CatalogItem]]:
    """
    Load a user's ratings from JSON or an IMDb CSV export.

    CSV exports also carry metadata for the rated titles, returned as catalog items.
    """
    if Path(path).suffix.lower() == ".csv":
        result = load_imdb_export(path)
        return result.ratings, result.catalog
    return [RatedItem.from_dict(row) for row in _read_json_list(path)], []


def _load_pool(path: str | Path | None) -> list[CatalogItem]:
    if not path:
        return []
    return [CatalogItem.from_dict(row) for row in _read_json_list(path)]


def _load_peers(path: str | Path) -> dict[str, list[RatedItem]]:
    """
    Load other users' ratings.

    Accepts {"username": [ratings...]} or a bare array of rating arrays.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {f"peer-{i}": ratings for i, ratings in enumerate(data, 1)}
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: expected an object or array of rating arrays")
    return {
        str(name): [RatedItem.from_dict(row) for row in ratings]
        for name, ratings in data.items()
    }


def _output_recommendations(recs: list[Recommendation], args: argparse.Namespace, title: str) -> None:
    """Log recommendations in the requested format."""
    if getattr(args, "format", "text") == "json":
        logger.info(json.dumps([r.to_dict() for r in recs], indent=2))
        return

    logger.info(f"\n{title} ({len(recs)}):")
    if not recs:
        logger.info("  No recommendations.")
    for r in recs:
        year = f" ({r.year})" if r.year else ""
        logger.info(f"{r.rank}. {r.title}{year} - Score: {r.score:.1f}")
        logger.info(f"   Why: {r.reason}")


def cmd_recommend(args: argparse.Namespace) -> None:
    """Rank a candidate pool for one user."""
    try:
        ratings, rated_meta = _load_ratings(args.ratings)
        pool = _load_pool(args.pool)
        catalog = rated_meta + _load_pool(args.catalog)
        peers = _load_peers(args.peers) if args.peers else {}
    except ValidationError as exc:
        logger.error(f"Invalid input: {exc}")
        return

    if args.strategy == StrategyKind.PEER.value and not peers:
        logger.warning("Peer strategy without --peers; falling back to attribute scoring")

    strategy = make_strategy(args.strategy, peer_corpus=peers.values())
    engine = RecommendationEngine(strategy, catalog=catalog)
    logger.debug(f"Strategy: {engine.algorithm_info()}")

    try:
        if args.genre:
            recs = engine.by_genre(ratings, pool, args.genre, limit=args.limit)
            title = f"Top {args.genre} recommendations"
        elif args.contributor:
            recs = engine.by_contributor(ratings, pool, args.contributor, limit=args.limit)
            title = f"Top recommendations from {args.contributor}"
        elif args.decade is not None:
            recs = engine.by_decade(ratings, pool, args.decade, limit=args.limit)
            title = f"Top recommendations from the {args.decade}s"
        elif args.diverse:
            recs = engine.diverse_recommendations(ratings, pool, limit=args.limit)
            title = "Diverse recommendations"
        else:
            recs = engine.generate_recommendations(ratings, pool, {"limit": args.limit})
            title = f"Top recommendations ({engine.algorithm_info()['name']})"
    except ValidationError as exc:
        logger.error(f"Invalid input: {exc}")
        return
    except RecommendationTimeout as exc:
        logger.error(f"{exc}. Try again or shrink the peer corpus.")
        return
    except StrategyFailure as exc:
        logger.error(str(exc))
        return

    _output_recommendations(recs, args, title)


def cmd_profile(args: argparse.Namespace) -> None:
    """Show a user's affinity profile and rating summary."""
    try:
        ratings, rated_meta = _load_ratings(args.ratings)
        metadata = index_by_id(rated_meta + _load_pool(args.catalog))
    except ValidationError as exc:
        logger.error(f"Invalid input: {exc}")
        return

    if not ratings:
        logger.error(f"No ratings in {args.ratings}")
        return

    profile = build_profile(ratings, metadata)
    summary = analyze_preferences(ratings, metadata)

    logger.info(f"\nProfile for {args.ratings}")
    logger.info(f"  Ratings: {summary.total_ratings} (average {summary.average_rating:.1f}/10)")
    if profile.is_cold:
        logger.info("  No catalog metadata for rated items; attribute affinities are empty.")

    if profile.genre_affinity:
        logger.info("\nTop genres:")
        for g, score in sorted(profile.genre_affinity.items(), key=lambda x: -x[1])[:10]:
            logger.info(f"  {g}: {score:.2f} ({profile.genre_counts[g]} rated)")

    if profile.contributor_affinity:
        logger.info("\nTop contributors:")
        for c, score in sorted(profile.contributor_affinity.items(), key=lambda x: -x[1])[:10]:
            logger.info(f"  {c}: {score:.2f} ({profile.contributor_counts[c]} rated)")

    if profile.decade_affinity:
        logger.info("\nDecade preferences:")
        for dec in sorted(profile.decade_affinity):
            score = profile.decade_affinity[dec]
            bar = "█" * int(max(0, score))
            logger.info(f"  {dec}s: {bar} ({score:.1f})")

    logger.info("\nRating distribution:")
    for value, count in summary.rating_distribution.items():
        logger.info(f"  {value:>2}: {count}")


def cmd_similar_users(args: argparse.Namespace) -> None:
    """List peers by Pearson similarity to the user."""
    try:
        ratings, _ = _load_ratings(args.ratings)
        peers = _load_peers(args.peers)
    except ValidationError as exc:
        logger.error(f"Invalid input: {exc}")
        return

    target = {r.item_id: r.rating for r in ratings}

    scored = []
    for name, peer_ratings in tqdm(peers.items(), desc="Peers", disable=not args.progress):
        similarity = user_similarity(target, {r.item_id: r.rating for r in peer_ratings})
        scored.append((name, similarity))

    scored.sort(key=lambda x: -x[1])
    logger.info(f"\nPeers most similar to {args.ratings}:")
    for name, similarity in scored[:args.limit]:
        marker = "" if similarity > PEER_SIMILARITY_THRESHOLD else "  (below threshold)"
        logger.info(f"  {name}: {similarity:+.3f}{marker}")


def main():
    parser = argparse.ArgumentParser(description="Affinity Recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Recommend command
    rec_parser = subparsers.add_parser("recommend", help="Generate recommendations")
    rec_parser.add_argument("ratings", help="User ratings (JSON array or IMDb CSV export)")
    rec_parser.add_argument("pool", help="Candidate pool (JSON array of catalog items)")
    rec_parser.add_argument("--catalog", help="Extra catalog metadata for rated items (JSON array)")
    rec_parser.add_argument("--peers", help="Other users' ratings (JSON object or array of arrays)")
    rec_parser.add_argument("--strategy", choices=[k.value for k in StrategyKind],
                            default=StrategyKind.ATTRIBUTE.value, help="Scoring strategy")
    rec_parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="Number of recommendations")
    view = rec_parser.add_mutually_exclusive_group()
    view.add_argument("--genre", help="Only recommend this genre")
    view.add_argument("--contributor", help="Only recommend this director/contributor")
    view.add_argument("--decade", type=int, help="Only recommend this decade (e.g. 1990)")
    view.add_argument("--diverse", action="store_true", help="Cap repeats per genre and contributor")
    rec_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    rec_parser.set_defaults(func=cmd_recommend)

    # Profile command
    profile_parser = subparsers.add_parser("profile", help="Show a user's affinity profile")
    profile_parser.add_argument("ratings", help="User ratings (JSON array or IMDb CSV export)")
    profile_parser.add_argument("--catalog", help="Catalog metadata for rated items (JSON array)")
    profile_parser.set_defaults(func=cmd_profile)

    # Similar users command
    similar_parser = subparsers.add_parser("similar-users", help="Rank peers by rating correlation")
    similar_parser.add_argument("ratings", help="User ratings (JSON array or IMDb CSV export)")
    similar_parser.add_argument("peers", help="Other users' ratings")
    similar_parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="Number of peers to show")
    similar_parser.add_argument("--progress", action="store_true", help="Show a progress bar")
    similar_parser.set_defaults(func=cmd_similar_users)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
