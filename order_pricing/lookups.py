"""
Best-effort catalog lookups for the totals calculation.

A failure here must never block checkout: the error is logged and the
caller gets the default, flagged as degraded.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar
import logging

from . import config, schemas
from .crud import CatalogReader

logger = logging.getLogger(__name__)

T = TypeVar("T")

ZONE_PREFIX_LENGTH = 2


@dataclass(frozen=True)
class Fallback(Generic[T]):
    value: T
    degraded: bool = False


async def fetch_with_default(name: str, fetch: Callable[[], Awaitable[T]], default: T) -> Fallback[T]:
    try:
        return Fallback(await fetch())
    except Exception as e:
        logger.warning(f"Lookup '{name}' failed, using default {default!r}: {e}")
        return Fallback(default, degraded=True)


async def find_shipping_zone(
    catalog: CatalogReader, postal_code: Optional[str]
) -> Fallback[Optional[schemas.ShippingZoneSnapshot]]:
    prefix = (postal_code or "").strip()[:ZONE_PREFIX_LENGTH]
    if not prefix:
        return Fallback(None)
    return await fetch_with_default("shipping_zone", lambda: catalog.fetch_shipping_zone(prefix), None)


def _is_enabled(value: Any) -> bool:
    return value is True or value == "true"


async def free_shipping_enabled(catalog: CatalogReader) -> Fallback[bool]:
    async def fetch() -> bool:
        return _is_enabled(await catalog.fetch_setting(config.FREE_SHIPPING_SETTING_KEY))

    return await fetch_with_default(config.FREE_SHIPPING_SETTING_KEY, fetch, False)


async def cod_fee(catalog: CatalogReader) -> Fallback[float]:
    async def fetch() -> float:
        fee = schemas.lenient_number(await catalog.fetch_setting(config.COD_FEE_SETTING_KEY))
        # Absent, non-numeric or negative settings mean no surcharge
        return fee if fee is not None and fee > 0 else 0.0

    return await fetch_with_default(config.COD_FEE_SETTING_KEY, fetch, 0.0)
