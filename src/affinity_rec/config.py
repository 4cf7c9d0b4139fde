"""
Configuration constants for the affinity recommender.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Rating scale
MIN_RATING = 0
MAX_RATING = 10
MIN_IMPORT_RATING = 1  # IMDb exports never contain a 0 rating

# Output limits
DEFAULT_LIMIT = _get_int_env("AFFINITY_DEFAULT_LIMIT", 10, min_val=1)
DEFAULT_VIEW_LIMIT = 5  # genre / contributor / decade views
DIVERSITY_CANDIDATE_MULTIPLIER = 3

# Diversification caps
MAX_PER_GENRE = 3
MAX_PER_CONTRIBUTOR = 2
UNKNOWN_CONTRIBUTOR = "Unknown"

# Attribute/content scoring
DEFAULT_WEIGHTS = {
    'genre': 0.4,
    'contributor': 0.3,
    'decade': 0.2,
    'content': 0.1,
    'prior': 0.2,  # share of the baseline rating in the final blend
}
HIGH_RATING_THRESHOLD = 7          # ratings at or above count as "liked"
NEUTRAL_CONTENT_SCORE = 5.0        # content term when the user liked nothing
HIGHLY_RATED_BASELINE = 7.5
SCORE_TIER_STRONG = 7.0
SCORE_TIER_GOOD = 6.0
SCORING_WEIGHTS_PATH = Path(os.environ.get("AFFINITY_SCORING_WEIGHTS", "data/scoring_weights.json"))

# Peer correlation
PEER_MIN_COMMON_ITEMS = 3
PEER_SIMILARITY_THRESHOLD = 0.3    # strict: similarity must exceed this
PEER_MAX_NEIGHBORS = 10
PEER_ENDORSE_MIN_RATING = 7
PEER_MIN_CORPUS_SIZE = 2
PEER_MIN_ENDORSEMENT = 1.0         # accumulated similarity an item needs to be emitted
PEER_CORPUS_MAX = _get_int_env("AFFINITY_PEER_CORPUS_MAX", 5000, min_val=2)
PEER_DEADLINE_SECONDS = _get_float_env("AFFINITY_PEER_DEADLINE_SECONDS", 5.0, min_val=0.0)

# Preference analysis
FAVORITES_MIN_COUNT = 2
FAVORITES_TOP_N = 5

# Profile cache
PROFILE_CACHE_SIZE = _get_int_env("AFFINITY_PROFILE_CACHE_SIZE", 256, min_val=1)
PROFILE_CACHE_TTL_SECONDS = _get_float_env("AFFINITY_PROFILE_CACHE_TTL", 300.0, min_val=1.0)
