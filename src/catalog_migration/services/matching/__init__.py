"""Catalog matching between source and destination marketplaces.

Key Components:
    - compute_missing: Source items absent from the destination
    - is_eligible: Minimum catalog size gate for bulk migration
    - find_price_mismatches / find_near_duplicates: Planning diagnostics
"""
from catalog_migration.services.matching.matcher import (
    MIN_SOURCE_ITEMS_FOR_BATCH,
    NearDuplicate,
    PriceMismatch,
    compute_common,
    compute_missing,
    find_near_duplicates,
    find_price_mismatches,
    is_eligible,
    normalize_name,
)

__all__ = [
    "MIN_SOURCE_ITEMS_FOR_BATCH",
    "NearDuplicate",
    "PriceMismatch",
    "compute_common",
    "compute_missing",
    "find_near_duplicates",
    "find_price_mismatches",
    "is_eligible",
    "normalize_name",
]
