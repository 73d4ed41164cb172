"""Pydantic models for marketplace catalog items.

Both models ignore unknown fields so raw API payloads can be validated
directly, and both are frozen: catalog snapshots are read-only inputs.
"""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Dimensions(BaseModel):
    """Package dimensions of a source item (centimeters)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    length: Optional[float] = Field(default=None, ge=0)
    width: Optional[float] = Field(default=None, ge=0)
    height: Optional[float] = Field(default=None, ge=0)


class SourceItem(BaseModel):
    """An item listed on the source marketplace.

    Attributes:
        id: Source marketplace identifier
        name: Display name; may be missing or blank on badly curated catalogs
        price: Price in source currency units
        description: Description, possibly containing HTML
        weight: Weight in grams, if known
        dimensions: Package dimensions, if known
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    name: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), ge=0)
    description: str = ""
    weight: Optional[float] = Field(default=None, ge=0)
    dimensions: Optional[Dimensions] = None


class DestinationItem(BaseModel):
    """An item listed on (or created on) the destination marketplace."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    title: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), ge=0)
    description: str = ""
