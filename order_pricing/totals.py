from typing import Iterable, List, Optional, Sequence, Tuple, Union
import asyncio
import datetime
import logging
import math

from . import config, lookups, schemas
from .crud import CatalogReader
from .deals import apply_deals_to_products, round_half_up, utc_now

logger = logging.getLogger(__name__)

# Composite variant ids look like "<variant id>.<suffix>"
VARIANT_ID_DELIMITER = "."


# --- Line pricing ---

def find_variant(
    variants: Sequence[schemas.VariantSnapshot], variant_id: Optional[str]
) -> Optional[schemas.VariantSnapshot]:
    if not variant_id:
        return None
    wanted = str(variant_id).strip()
    candidates = [wanted]
    if VARIANT_ID_DELIMITER in wanted:
        candidates.append(wanted.split(VARIANT_ID_DELIMITER, 1)[0])
    for candidate in candidates:
        for variant in variants:
            if variant.id == candidate:
                return variant
    return None


def resolve_unit_price(product: schemas.PricedProduct, variant_id: Optional[str] = None) -> float:
    """
    Deal price when there is one, otherwise the original price.
    A selected variant with its own price gets the product's deal percentage
    applied to that price; variants are never matched against deals directly.
    """
    price = product.deal_price if product.deal_price is not None else product.original_price

    variant = find_variant(product.variants, variant_id)
    if variant_id and variant is None:
        logger.debug(f"Variant '{variant_id}' not found on product {product.id}, using product price")
    if variant is not None and variant.price is not None:
        if product.deal_price is not None and product.original_price:
            discount_percent = (product.original_price - product.deal_price) / product.original_price * 100
            price = round_half_up(variant.price - variant.price * discount_percent / 100)
        else:
            price = variant.price

    return max(0.0, price)


def tax_rate(product: schemas.ProductSnapshot) -> float:
    # Absent, zero or invalid rates add nothing
    return product.tax if product.tax is not None and product.tax > 0 else 0.0


# --- Coupons ---

async def resolve_coupon(
    catalog: CatalogReader, coupon: Union[schemas.CouponSnapshot, str, None]
) -> Optional[schemas.CouponSnapshot]:
    if coupon is None or isinstance(coupon, schemas.CouponSnapshot):
        return coupon
    coupon_doc = await catalog.fetch_coupon(coupon)
    if coupon_doc is None:
        logger.warning(f"Coupon '{coupon}' not found, ignoring it")
    return coupon_doc


def is_coupon_eligible(coupon: schemas.CouponSnapshot, subtotal: float, now: datetime.datetime) -> bool:
    if not coupon.is_active:
        return False
    if coupon.expiry_date is not None and coupon.expiry_date <= now:
        return False
    if coupon.start_date is not None and coupon.start_date > now:
        return False
    return subtotal >= coupon.min_cart_value


def evaluate_coupon(
    coupon: Optional[schemas.CouponSnapshot], subtotal: float, now: datetime.datetime
) -> Tuple[float, Optional[schemas.CouponSnapshot]]:
    """Returns the discount and the coupon actually applied (None when ineligible)."""
    if coupon is None:
        return 0.0, None
    if not is_coupon_eligible(coupon, subtotal, now):
        logger.info(f"Coupon {coupon.code or coupon.id} is not eligible for subtotal {subtotal:.2f}, dropping it")
        return 0.0, None

    discount = 0.0
    if coupon.discount_type == "percentage":
        discount = subtotal * coupon.discount_value / 100
        if coupon.max_discount:
            discount = min(discount, coupon.max_discount)
    elif coupon.discount_type == "fixed":
        discount = coupon.discount_value

    return min(max(discount, 0.0), subtotal), coupon


# --- Shipping ---

def weight_charge(zone: Optional[schemas.ShippingZoneSnapshot], total_weight: float) -> float:
    tiers = sorted(zone.weight_rates, key=lambda tier: tier.min_weight) if zone else []
    if not tiers:
        # Rounded first so float noise cannot push the ceiling up a unit
        return float(math.ceil(round(total_weight * config.PER_KG_RATE, 6)))

    for tier in tiers:
        if tier.min_weight <= total_weight <= tier.max_weight:
            return tier.rate
    # Heavier (or lighter) than every band: charge the top band
    return tiers[-1].rate


def shipping_class_multiplier(products: Iterable[schemas.ProductSnapshot]) -> float:
    multipliers = [
        float(config.SHIPPING_CLASS_SURCHARGES.get(product.shipping_class or "standard", 1.0))
        for product in products
    ]
    return max(multipliers) if multipliers else 1.0


def quote_shipping(
    zone: Optional[schemas.ShippingZoneSnapshot],
    items: Sequence[schemas.PricedLineItem],
    total_weight: float,
    subtotal: float,
    shipping_method: str,
    coupon: Optional[schemas.CouponSnapshot] = None,
    global_free_shipping: bool = False,
) -> schemas.ShippingBreakdown:
    def zone_value(name: str, default: float) -> float:
        value = getattr(zone, name) if zone is not None else None
        return default if value is None else value

    base_rate = zone_value("base_rate", config.DEFAULT_BASE_RATE)
    region_multiplier = zone_value("region_multiplier", config.DEFAULT_REGION_MULTIPLIER)
    express_multiplier = (
        zone_value("express_multiplier", config.EXPRESS_MULTIPLIER) if shipping_method == "express" else 1.0
    )
    threshold = zone_value("free_shipping_threshold", config.DEFAULT_FREE_SHIPPING_THRESHOLD)

    handling_fee = sum(max(0.0, item.product.shipping_fee or 0.0) * item.quantity for item in items)
    weight = weight_charge(zone, total_weight)
    class_multiplier = shipping_class_multiplier(item.product for item in items)

    raw_fee = (base_rate + handling_fee + weight) * region_multiplier * class_multiplier * express_multiplier
    calculated_fee = max(0.0, round_half_up(raw_fee, 0))

    reason = None
    if global_free_shipping:
        reason = "global_setting"
    elif subtotal >= threshold:
        reason = "threshold"
    elif coupon is not None and coupon.discount_type == "free_shipping":
        reason = "coupon"

    return schemas.ShippingBreakdown(
        zone_id=zone.id if zone else None,
        base_rate=base_rate,
        handling_fee=handling_fee,
        weight_charge=weight,
        region_multiplier=region_multiplier,
        class_multiplier=class_multiplier,
        express_multiplier=express_multiplier,
        free_shipping_threshold=threshold,
        calculated_fee=calculated_fee,
        fee=0.0 if reason else calculated_fee,
        free_shipping_reason=reason,
    )


# --- Totals ---

async def calculate_totals(
    catalog: CatalogReader,
    request: schemas.TotalsRequest,
    now: Optional[datetime.datetime] = None,
) -> schemas.TotalsResult:
    """
    Computes subtotal, tax, coupon discount, shipping and COD surcharge for
    a set of line items. The request is not modified; priced line items are
    returned on the result.
    """
    now = now or utc_now()

    # 1. Fetch products in one batch and apply deals
    product_ids = list(dict.fromkeys(item.product_id for item in request.items))
    products = await catalog.fetch_products(product_ids) if product_ids else []
    priced_products = {product.id: product for product in await apply_deals_to_products(catalog, products, now)}

    # 2. Price each line
    subtotal = 0.0
    tax_total = 0.0
    total_weight = 0.0
    items: List[schemas.PricedLineItem] = []
    missing_product_ids: List[str] = []

    for item in request.items:
        product = priced_products.get(item.product_id)
        if product is None:
            logger.warning(f"Product {item.product_id} is missing from the catalog, skipping its line")
            missing_product_ids.append(item.product_id)
            continue

        unit_price = resolve_unit_price(product, item.variant_id)
        line_total = unit_price * item.quantity
        line_tax = line_total * tax_rate(product) / 100

        subtotal += line_total
        tax_total += line_tax
        total_weight += max(0.0, product.weight or 0.0) * item.quantity

        items.append(schemas.PricedLineItem(
            product_id=item.product_id,
            variant_id=item.variant_id,
            quantity=item.quantity,
            unit_price=unit_price,
            line_total=line_total,
            line_tax=line_tax,
            product=product,
        ))

    logger.debug(f"Subtotal={subtotal:.2f}, Tax={tax_total:.2f}, Weight={total_weight:.3f}kg")

    # 3. Coupon
    coupon = await resolve_coupon(catalog, request.coupon)
    discount, applied_coupon = evaluate_coupon(coupon, subtotal, now)

    # 4. Best-effort lookups
    zone_lookup, free_shipping_lookup, cod_lookup = await asyncio.gather(
        lookups.find_shipping_zone(catalog, request.address.postal_code),
        lookups.free_shipping_enabled(catalog),
        lookups.cod_fee(catalog) if request.payment_method == "cod" else _no_cod_fee(),
    )
    degraded_lookups = [
        name for name, lookup in (
            ("shipping_zone", zone_lookup),
            (config.FREE_SHIPPING_SETTING_KEY, free_shipping_lookup),
            (config.COD_FEE_SETTING_KEY, cod_lookup),
        ) if lookup.degraded
    ]

    # 5. Shipping
    shipping = quote_shipping(
        zone=zone_lookup.value,
        items=items,
        total_weight=total_weight,
        subtotal=subtotal,
        shipping_method=request.shipping_method,
        coupon=applied_coupon,
        global_free_shipping=free_shipping_lookup.value,
    )
    cod_fee = cod_lookup.value

    # 6. Final total (never negative)
    final_total = max(subtotal + tax_total - discount + shipping.fee + cod_fee, 0.0)

    logger.info(
        f"Totals calculated - Subtotal: {subtotal:.2f}, Tax: {tax_total:.2f}, Discount: {discount:.2f}, "
        f"Shipping: {shipping.fee:.2f}, COD: {cod_fee:.2f}, Final: {final_total:.2f}"
    )

    return schemas.TotalsResult(
        subtotal=round_half_up(subtotal),
        tax_total=round_half_up(tax_total),
        discount=round_half_up(discount),
        shipping_fee=shipping.fee,
        cod_fee=round_half_up(cod_fee),
        final_total=round_half_up(final_total),
        applied_coupon=applied_coupon,
        items=items,
        total_weight=total_weight,
        shipping=shipping,
        missing_product_ids=missing_product_ids,
        degraded_lookups=degraded_lookups,
    )


async def _no_cod_fee() -> lookups.Fallback[float]:
    return lookups.Fallback(0.0)
