"""Catalog comparison between the source and destination marketplaces.

An item is considered present on the destination when some destination
title equals its name after trimming and lowercasing. Nothing fuzzier
decides migration; fuzzy scoring is only used to report likely duplicates
so an operator can review them before a batch.

Key Components:
    - normalize_name: The normalization both sides go through
    - compute_missing / compute_common: Exact-match partition of the source
    - is_eligible: Fixed minimum catalog size for bulk migration
    - find_price_mismatches: Common items whose prices disagree
    - find_near_duplicates: RapidFuzz WRatio report over missing items
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

import structlog
from rapidfuzz import fuzz, process, utils

from catalog_migration.models.catalog import DestinationItem, SourceItem

logger = structlog.get_logger(__name__)

MIN_SOURCE_ITEMS_FOR_BATCH = 20


@dataclass(frozen=True)
class PriceMismatch:
    """An item present on both sides whose prices do not agree.

    Attributes:
        source_item: Item on the source marketplace
        destination_item: Its exact-name counterpart on the destination
        destination_price_in_source_units: Destination price converted back
    """
    source_item: SourceItem
    destination_item: DestinationItem
    destination_price_in_source_units: Decimal


@dataclass(frozen=True)
class NearDuplicate:
    """A missing item whose name closely resembles an existing destination title."""
    source_item: SourceItem
    destination_item: DestinationItem
    score: float


def normalize_name(name: Optional[str]) -> str:
    """Trim whitespace and lowercase; missing names normalize to ''."""
    if not name:
        return ""
    return name.strip().lower()


def _destination_index(destination_items: Iterable[DestinationItem]) -> dict[str, DestinationItem]:
    """Map normalized title -> first destination item with that title."""
    index: dict[str, DestinationItem] = {}
    for item in destination_items:
        key = normalize_name(item.title)
        if key and key not in index:
            index[key] = item
    return index


def compute_missing(
    source_items: Sequence[SourceItem],
    destination_items: Sequence[DestinationItem],
) -> List[SourceItem]:
    """Source items with no destination item of the same normalized name.

    Items without a usable name are left out: they cannot be matched and
    migrating them would create unidentifiable duplicates.
    """
    index = _destination_index(destination_items)
    missing = []
    skipped = 0
    for item in source_items:
        key = normalize_name(item.name)
        if not key:
            skipped += 1
            continue
        if key not in index:
            missing.append(item)

    logger.debug(
        "missing_items_computed",
        source_count=len(source_items),
        destination_count=len(destination_items),
        missing_count=len(missing),
        unnamed_skipped=skipped,
    )
    return missing


def compute_common(
    source_items: Sequence[SourceItem],
    destination_items: Sequence[DestinationItem],
) -> List[tuple[SourceItem, DestinationItem]]:
    """Pairs of source items and the destination item they match."""
    index = _destination_index(destination_items)
    pairs = []
    for item in source_items:
        match = index.get(normalize_name(item.name))
        if match is not None:
            pairs.append((item, match))
    return pairs


def is_eligible(source_items: Sequence[SourceItem]) -> bool:
    """Bulk migration is offered only for catalogs of at least 20 items."""
    return len(source_items) >= MIN_SOURCE_ITEMS_FOR_BATCH


def find_price_mismatches(
    source_items: Sequence[SourceItem],
    destination_items: Sequence[DestinationItem],
    price_multiplier: int = 10,
) -> List[PriceMismatch]:
    """Common items whose destination price, converted to source units, differs.

    Destination prices are expressed in a unit `price_multiplier` times
    smaller than the source's; conversion floors like the storefront does.
    """
    mismatches = []
    for source_item, destination_item in compute_common(source_items, destination_items):
        converted = destination_item.price // price_multiplier
        if converted != source_item.price:
            mismatches.append(
                PriceMismatch(
                    source_item=source_item,
                    destination_item=destination_item,
                    destination_price_in_source_units=converted,
                )
            )
    return mismatches


def find_near_duplicates(
    missing_items: Sequence[SourceItem],
    destination_items: Sequence[DestinationItem],
    threshold: float = 92.0,
) -> List[NearDuplicate]:
    """Missing items whose best RapidFuzz WRatio score reaches `threshold`.

    Uses default preprocessing (lowercase, strip non-alphanumerics), which is
    exactly the class of difference the exact matcher does not forgive.
    """
    titled = [item for item in destination_items if normalize_name(item.title)]
    if not titled or not missing_items:
        return []

    choices = [item.title for item in titled]
    duplicates = []
    for item in missing_items:
        if not normalize_name(item.name):
            continue
        best = process.extractOne(
            item.name,
            choices,
            scorer=fuzz.WRatio,
            processor=utils.default_process,
            score_cutoff=threshold,
        )
        if best is None:
            continue
        _, score, index = best
        duplicates.append(NearDuplicate(source_item=item, destination_item=titled[index], score=score))

    if duplicates:
        logger.info("near_duplicates_found", count=len(duplicates), threshold=threshold)
    return duplicates
