import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from affinity_rec.catalog import CatalogItem, RatedItem  # noqa: E402


@pytest.fixture
def fresh_config(monkeypatch):
    """
    Reload config so env overrides set by the test take effect, then restore it.
    """
    import affinity_rec.config as config

    def _reload():
        return importlib.reload(config)

    yield _reload

    monkeypatch.undo()
    importlib.reload(config)


@pytest.fixture
def ratings():
    """A user who loves Ridley Scott sci-fi and is lukewarm on Michael Mann."""
    return [
        RatedItem("m1", "Alien", 9),
        RatedItem("m2", "Heat", 6),
    ]


@pytest.fixture
def rated_metadata():
    return [
        CatalogItem("m1", "Alien", year=1979, genres=("Sci-Fi", "Horror"), contributor="Ridley Scott"),
        CatalogItem("m2", "Heat", year=1995, genres=("Crime",), contributor="Michael Mann"),
    ]


@pytest.fixture
def pool(rated_metadata):
    return rated_metadata + [
        CatalogItem("m3", "Blade Runner", year=1982, genres=("Sci-Fi", "Thriller"), contributor="Ridley Scott"),
        CatalogItem("m4", "Collateral", year=2004, genres=("Crime", "Thriller"), contributor="Michael Mann",
                    baseline_rating=7.5),
        CatalogItem("m5", "Paddington", year=2014, genres=("Family", "Comedy"), contributor="Paul King",
                    baseline_rating=7.2),
    ]
