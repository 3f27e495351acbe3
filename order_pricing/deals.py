"""
Deal resolution: decides which active deal, if any, gives each product
its lowest price.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence
import asyncio
import datetime
import logging

from . import config, schemas
from .crud import CatalogReader

logger = logging.getLogger(__name__)

# deal id -> resolved product ids, or None for a global deal
DealTargets = Mapping[str, Optional[FrozenSet[str]]]


def round_half_up(value: float, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def original_price(product: schemas.ProductSnapshot) -> float:
    """Sale price when set, otherwise the list price."""
    if product.sale_price is not None:
        return product.sale_price
    if product.price is not None:
        return product.price
    return 0.0


def is_deal_active(deal: schemas.DealSnapshot, now: datetime.datetime) -> bool:
    if not deal.is_active:
        return False
    return deal.start_date <= now <= deal.end_date


async def list_active_deals(catalog: CatalogReader, now: datetime.datetime) -> List[schemas.DealSnapshot]:
    """
    Active deals, ordered by id.
    The ordering decides ties between equally good deals, so it must not
    depend on how the store happened to return rows.
    """
    deals = await catalog.fetch_active_deals(now)
    return sorted((deal for deal in deals if is_deal_active(deal, now)), key=lambda deal: deal.id)


async def resolve_deal_targets(catalog: CatalogReader, deal: schemas.DealSnapshot) -> Optional[FrozenSet[str]]:
    """
    Product ids a deal applies to, or None when the deal is global.
    Category and sub-category members only count while active and not deleted.
    """
    if deal.is_global:
        return None

    product_ids = set(deal.products)
    if deal.categories:
        product_ids.update(await catalog.fetch_product_ids(category_ids=deal.categories))
    if deal.sub_categories:
        product_ids.update(await catalog.fetch_product_ids(sub_category_ids=deal.sub_categories))
    return frozenset(product_ids)


async def batch_resolve_deal_targets(
    catalog: CatalogReader, deals: Sequence[schemas.DealSnapshot]
) -> Dict[str, Optional[FrozenSet[str]]]:
    # Deals are independent, so their catalog lookups run concurrently
    resolved = await asyncio.gather(*(resolve_deal_targets(catalog, deal) for deal in deals))
    return {deal.id: targets for deal, targets in zip(deals, resolved)}


def is_product_affected(
    product_id: str, deal: schemas.DealSnapshot, targets: Optional[FrozenSet[str]]
) -> bool:
    if deal.is_global:
        return True
    if not targets:
        return False
    return product_id in targets


def calculate_deal_price(base_price: float, deal: schemas.DealSnapshot) -> float:
    if not base_price or base_price <= 0:
        return base_price

    price = base_price
    if deal.discount_type == "percentage":
        price = base_price - (base_price * deal.discount_value) / 100
    elif deal.discount_type in ("fixed", "flat"):
        price = max(0.0, base_price - deal.discount_value)

    return round_half_up(price)


def find_best_deal(
    product: schemas.ProductSnapshot,
    deals: Iterable[schemas.DealSnapshot],
    targets: DealTargets,
) -> Optional[schemas.DealSnapshot]:
    """
    The deal giving the strictly lowest price for the product.
    On a tie the earlier deal in `deals` keeps its place.
    """
    price = original_price(product)
    if price <= 0:
        return None

    best_deal = None
    best_price = price
    for deal in deals:
        if not is_product_affected(product.id, deal, targets.get(deal.id)):
            continue
        deal_price = calculate_deal_price(price, deal)
        if deal_price < best_price:
            best_deal, best_price = deal, deal_price
    return best_deal


def price_product(
    product: schemas.ProductSnapshot,
    deals: Sequence[schemas.DealSnapshot],
    targets: DealTargets,
) -> schemas.DealPricing:
    price = original_price(product)
    best_deal = find_best_deal(product, deals, targets) if deals else None
    if best_deal is None:
        return schemas.DealPricing(original_price=price)

    return schemas.DealPricing(
        original_price=price,
        deal_price=calculate_deal_price(price, best_deal),
        applied_deal_id=best_deal.id,
        applied_deal_variant=best_deal.deal_variant or config.DEFAULT_DEAL_VARIANT,
    )


def annotate(product: schemas.ProductSnapshot, pricing: schemas.DealPricing) -> schemas.PricedProduct:
    return schemas.PricedProduct.model_validate({**product.model_dump(), **pricing.model_dump()})


async def apply_deals_to_products(
    catalog: CatalogReader,
    products: Sequence[schemas.ProductSnapshot],
    now: Optional[datetime.datetime] = None,
) -> List[schemas.PricedProduct]:
    """
    Annotates products with deal pricing, preserving their order.
    Returns new objects; the input snapshots are left as they are.
    """
    if not products:
        return []

    now = now or utc_now()
    deals = await list_active_deals(catalog, now)
    targets = await batch_resolve_deal_targets(catalog, deals) if deals else {}
    logger.info(f"Pricing {len(products)} products against {len(deals)} active deals")

    priced = [annotate(product, price_product(product, deals, targets)) for product in products]
    discounted = sum(1 for product in priced if product.deal_price is not None)
    logger.debug(f"{discounted} of {len(priced)} products received a deal price")
    return priced
