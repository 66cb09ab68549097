"""
Fertilizer catalog and reference solutions.

Static data shipped in data/catalog.json. The location can be overridden
with NPK_CALC_CATALOG_PATH. Loaded once and cached for the process.
"""
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from npk_calc.services.dosing_models import FertilizerProfile, ReferenceSolution

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent / "data" / "catalog.json"

_catalog_cache: Optional[Dict] = None


class CatalogError(Exception):
    """Raised when the catalog file cannot be read or parsed."""


class UnknownFertilizerError(KeyError):
    """Raised when a fertilizer id is not in the catalog."""


class UnknownSolutionError(KeyError):
    """Raised when a reference solution id is not in the catalog."""


def get_catalog_path() -> Path:
    return Path(os.environ.get("NPK_CALC_CATALOG_PATH") or DEFAULT_CATALOG_PATH)


def clear_catalog_cache():
    """Clear the cache to reload the catalog on next call."""
    global _catalog_cache
    _catalog_cache = None


def load_catalog() -> Dict:
    """Load the catalog JSON, parsing every entry into model objects."""
    global _catalog_cache
    if _catalog_cache is not None:
        return _catalog_cache

    path = get_catalog_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        fertilizers = [FertilizerProfile.from_dict(item) for item in data.get("fertilizers", [])]
        solutions = [ReferenceSolution.from_dict(item) for item in data.get("solutions", [])]
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Error loading catalog {path}: {e}")
        raise CatalogError(f"Could not load catalog {path}: {e}") from e

    _catalog_cache = {
        "fertilizers": {f.id: f for f in fertilizers},
        "solutions": {s.id: s for s in solutions},
    }
    logger.info(f"Loaded {len(fertilizers)} fertilizers and {len(solutions)} reference solutions from {path}")
    return _catalog_cache


def get_fertilizers() -> List[FertilizerProfile]:
    return sorted(load_catalog()["fertilizers"].values(), key=lambda f: f.name.casefold())


def get_fertilizer(fertilizer_id: str) -> FertilizerProfile:
    try:
        return load_catalog()["fertilizers"][fertilizer_id]
    except KeyError:
        raise UnknownFertilizerError(fertilizer_id) from None


def get_reference_solutions() -> List[ReferenceSolution]:
    return list(load_catalog()["solutions"].values())


def get_reference_solution(solution_id: str) -> ReferenceSolution:
    try:
        return load_catalog()["solutions"][solution_id]
    except KeyError:
        raise UnknownSolutionError(solution_id) from None
