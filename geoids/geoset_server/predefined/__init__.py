"""
Predefined regional GEOID sets (south Florida, SoCal, Missouri River Basin, ...).
"""

from .catalog import (
    BUNDLED_CATALOG,
    CatalogDocument,
    CatalogEntry,
    PredefinedSet,
    SeedReport,
    get_predefined,
    load_catalog,
    seed_predefined_sets,
)

__all__ = [
    "BUNDLED_CATALOG",
    "CatalogDocument",
    "CatalogEntry",
    "PredefinedSet",
    "SeedReport",
    "get_predefined",
    "load_catalog",
    "seed_predefined_sets",
]
