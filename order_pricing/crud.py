from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select
from typing import Any, Dict, Iterable, List, Optional, Protocol
from collections import defaultdict
import datetime
from . import schemas, models
import logging

logger = logging.getLogger(__name__)

# Deal snapshot field -> association table and its target column
DEAL_SCOPES = (
    ("products", models.deal_products, models.deal_products.c.product_id),
    ("categories", models.deal_categories, models.deal_categories.c.category_id),
    ("sub_categories", models.deal_sub_categories, models.deal_sub_categories.c.category_id),
)


async def _target_ids(session, table, column, deal_ids: List[str]) -> Dict[str, List[str]]:
    """Target ids per deal, read from an association table without loading the targets."""
    if not deal_ids:
        return {}
    stmt = (
        select(table.c.deal_id, column)
        .where(table.c.deal_id.in_(deal_ids))
        .order_by(table.c.deal_id, column)
    )
    result = await session.execute(stmt)
    target_ids = defaultdict(list)
    for deal_id, target_id in result.all():
        target_ids[deal_id].append(str(target_id))
    return target_ids


class CatalogReader(Protocol):
    """Read operations the pricing core needs from the catalog store."""

    async def fetch_active_deals(self, now: datetime.datetime) -> List[schemas.DealSnapshot]:
        ...

    async def fetch_product_ids(
        self,
        category_ids: Iterable[str] = (),
        sub_category_ids: Iterable[str] = (),
    ) -> List[str]:
        ...

    async def fetch_products(self, product_ids: Iterable[str]) -> List[schemas.ProductSnapshot]:
        ...

    async def fetch_coupon(self, coupon_id: str) -> Optional[schemas.CouponSnapshot]:
        ...

    async def fetch_shipping_zone(self, prefix: str) -> Optional[schemas.ShippingZoneSnapshot]:
        ...

    async def fetch_setting(self, key: str) -> Any:
        ...


class SqlCatalog:
    """
    CatalogReader backed by async SQLAlchemy.
    Each call opens its own session, so calls can run concurrently.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def fetch_active_deals(self, now: datetime.datetime) -> List[schemas.DealSnapshot]:
        stmt = select(models.Deal).where(
            models.Deal.is_active.is_(True),
            models.Deal.start_date <= now,
            models.Deal.end_date >= now,
        ).order_by(models.Deal.id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
            deal_ids = [deal.id for deal in rows]
            scopes = {}
            for name, table, column in DEAL_SCOPES:
                scopes[name] = await _target_ids(session, table, column, deal_ids)

        deals = [
            schemas.DealSnapshot.model_validate({
                **{column.name: getattr(deal, column.name) for column in models.Deal.__table__.columns},
                **{name: target_ids.get(deal.id, []) for name, target_ids in scopes.items()},
            })
            for deal in rows
        ]
        logger.debug(f"Fetched {len(deals)} active deals at {now.isoformat()}")
        return deals

    async def fetch_product_ids(
        self,
        category_ids: Iterable[str] = (),
        sub_category_ids: Iterable[str] = (),
    ) -> List[str]:
        """Ids of active, non-deleted products under any of the given (sub)categories."""
        category_ids = list(category_ids)
        sub_category_ids = list(sub_category_ids)
        membership = []
        if category_ids:
            membership.append(models.Product.category_id.in_(category_ids))
        if sub_category_ids:
            membership.append(models.Product.sub_category_id.in_(sub_category_ids))
        if not membership:
            return []

        stmt = select(models.Product.id).where(
            or_(*membership),
            models.Product.is_active.is_(True),
            models.Product.deleted_at.is_(None),
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [str(product_id) for product_id in result.scalars().all()]

    async def fetch_products(self, product_ids: Iterable[str]) -> List[schemas.ProductSnapshot]:
        # Fetch all items in one query
        product_ids = list(dict.fromkeys(product_ids))
        if not product_ids:
            return []
        stmt = select(models.Product).where(models.Product.id.in_(product_ids))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            products = [schemas.ProductSnapshot.model_validate(product) for product in result.scalars().all()]
        logger.debug(f"Fetched {len(products)} of {len(product_ids)} requested products")
        return products

    async def fetch_coupon(self, coupon_id: str) -> Optional[schemas.CouponSnapshot]:
        async with self._session_factory() as session:
            coupon = await session.get(models.Coupon, coupon_id)
            return schemas.CouponSnapshot.model_validate(coupon) if coupon else None

    async def fetch_shipping_zone(self, prefix: str) -> Optional[schemas.ShippingZoneSnapshot]:
        """First active zone whose postal prefix starts with `prefix`, shortest prefix first."""
        stmt = (
            select(models.ShippingZone)
            .where(
                models.ShippingZone.postal_prefix.startswith(prefix, autoescape=True),
                models.ShippingZone.is_active.is_(True),
            )
            .order_by(
                func.length(models.ShippingZone.postal_prefix),
                models.ShippingZone.postal_prefix,
                models.ShippingZone.id,
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            zone = result.scalars().first()
            return schemas.ShippingZoneSnapshot.model_validate(zone) if zone else None

    async def fetch_setting(self, key: str) -> Any:
        async with self._session_factory() as session:
            setting = await session.get(models.SiteSetting, key)
            return setting.value if setting else None
