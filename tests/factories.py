"""In-memory catalog and document builders shared by the test suite."""
import asyncio
import datetime

from order_pricing import schemas

NOW = datetime.datetime(2026, 10, 19, 12, 0, tzinfo=datetime.timezone.utc)
DAY = datetime.timedelta(days=1)


def product(product_id, price=100.0, **fields):
    doc = {"_id": product_id, "price": price, "category_id": "cat-phones"}
    doc.update(fields)
    return schemas.ProductSnapshot.model_validate(doc)


def deal(deal_id, discount_type="percentage", discount_value=10, **fields):
    doc = {
        "_id": deal_id,
        "is_active": True,
        "start_date": NOW - DAY,
        "end_date": NOW + DAY,
        "discount_type": discount_type,
        "discount_value": discount_value,
        "is_global": False,
    }
    doc.update(fields)
    return schemas.DealSnapshot.model_validate(doc)


def coupon(coupon_id, discount_type="percentage", discount_value=10, **fields):
    doc = {"_id": coupon_id, "code": coupon_id.upper(), "discount_type": discount_type, "discount_value": discount_value}
    doc.update(fields)
    return schemas.CouponSnapshot.model_validate(doc)


def zone(zone_id, postal_prefix, **fields):
    doc = {"_id": zone_id, "postal_prefix": postal_prefix}
    doc.update(fields)
    return schemas.ShippingZoneSnapshot.model_validate(doc)


class FakeCatalog:
    """
    CatalogReader over plain dicts. `failing` names lookups that raise:
    "deals", "product_ids", "products", "coupon", "zone" or a setting key.
    """

    def __init__(self, products=(), deals=(), coupons=(), zones=(), settings=None, failing=()):
        self.products = {item.id: item for item in products}
        self.deals = list(deals)
        self.coupons = {item.id: item for item in coupons}
        self.zones = list(zones)
        self.settings = dict(settings or {})
        self.failing = set(failing)
        self.calls = []

    def _record(self, name):
        self.calls.append(name)
        if name in self.failing:
            raise RuntimeError(f"{name} lookup unavailable")

    async def fetch_active_deals(self, now):
        self._record("deals")
        # Returned unfiltered on purpose; the engine re-checks activity
        return list(self.deals)

    async def fetch_product_ids(self, category_ids=(), sub_category_ids=()):
        self._record("product_ids")
        categories, sub_categories = set(category_ids), set(sub_category_ids)
        return [
            item.id for item in self.products.values()
            if item.is_active and item.deleted_at is None
            and (item.category_id in categories or item.sub_category_id in sub_categories)
        ]

    async def fetch_products(self, product_ids):
        self._record("products")
        return [self.products[product_id] for product_id in product_ids if product_id in self.products]

    async def fetch_coupon(self, coupon_id):
        self._record("coupon")
        return self.coupons.get(coupon_id)

    async def fetch_shipping_zone(self, prefix):
        self._record("zone")
        matching = sorted(
            (item for item in self.zones if item.is_active and item.postal_prefix.startswith(prefix)),
            key=lambda item: (len(item.postal_prefix), item.postal_prefix, item.id),
        )
        return matching[0] if matching else None

    async def fetch_setting(self, key):
        self._record(key)
        return self.settings.get(key)


class SlowCatalog(FakeCatalog):
    """Tracks how many target lookups are in flight at once."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_product_ids(self, category_ids=(), sub_category_ids=()):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().fetch_product_ids(category_ids, sub_category_ids)
        finally:
            self.in_flight -= 1
