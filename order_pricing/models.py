import uuid

from sqlalchemy import (
    Boolean, CheckConstraint, Column, Float, ForeignKey, JSON, String, Table, TIMESTAMP, Text, false, true,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


def new_id() -> str:
    return uuid.uuid4().hex


deal_products = Table(
    "deal_products",
    Base.metadata,
    Column("deal_id", String(64), ForeignKey("deals.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", String(64), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)

deal_categories = Table(
    "deal_categories",
    Base.metadata,
    Column("deal_id", String(64), ForeignKey("deals.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", String(64), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)

deal_sub_categories = Table(
    "deal_sub_categories",
    Base.metadata,
    Column("deal_id", String(64), ForeignKey("deals.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", String(64), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(64), ForeignKey("categories.id"), nullable=True, index=True)

    def __repr__(self):
        return f"<Category(id='{self.id}', name='{self.name}')>"


class Product(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True, index=True, default=new_id)
    name = Column(String(255), nullable=False)
    category_id = Column(String(64), ForeignKey("categories.id"), nullable=False, index=True)
    sub_category_id = Column(String(64), ForeignKey("categories.id"), nullable=True, index=True)
    price = Column(Float, nullable=False)
    sale_price = Column(Float, nullable=True)
    tax = Column(Float, nullable=True) # Percentage, e.g. 10 = 10%
    weight = Column(Float, nullable=False, server_default="0.5") # KG
    shipping_fee = Column(Float, nullable=False, server_default="0")
    shipping_class = Column(String(32), nullable=False, server_default="standard")
    is_active = Column(Boolean, nullable=False, server_default=true(), index=True)
    deleted_at = Column(TIMESTAMP(timezone=True), nullable=True, index=True)
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    variants = relationship(
        "ProductVariant", back_populates="product", lazy="selectin", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint('price >= 0', name='products_price_non_negative'),
    )

    def __repr__(self):
        return f"<Product(id='{self.id}', price={self.price}, sale_price={self.sale_price})>"


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(String(64), primary_key=True, default=new_id)
    product_id = Column(String(64), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String(64), nullable=True)
    price = Column(Float, nullable=True) # Overrides the product price when set
    attributes = Column(JSON, nullable=False, default=dict) # storage, ram, color...

    product = relationship("Product", back_populates="variants")


class Deal(Base):
    __tablename__ = "deals"

    id = Column(String(64), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, server_default=true(), index=True)
    start_date = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    end_date = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    discount_type = Column(String(16), nullable=False) # percentage | fixed
    discount_value = Column(Float, nullable=False)
    is_global = Column(Boolean, nullable=False, server_default=false())
    deal_variant = Column(String(32), nullable=True)

    # Write-side only; target ids are read straight from the association tables
    products = relationship("Product", secondary=deal_products, lazy="noload", passive_deletes=True)
    categories = relationship("Category", secondary=deal_categories, lazy="noload", passive_deletes=True)
    sub_categories = relationship("Category", secondary=deal_sub_categories, lazy="noload", passive_deletes=True)

    def __repr__(self):
        return f"<Deal(id='{self.id}', type='{self.discount_type}', value={self.discount_value})>"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(String(64), primary_key=True, default=new_id)
    code = Column(String(64), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, nullable=False, server_default=true())
    start_date = Column(TIMESTAMP(timezone=True), nullable=True)
    expiry_date = Column(TIMESTAMP(timezone=True), nullable=True)
    min_cart_value = Column(Float, nullable=False, server_default="0")
    discount_type = Column(String(16), nullable=False) # percentage | fixed | free_shipping
    discount_value = Column(Float, nullable=False, server_default="0")
    max_discount = Column(Float, nullable=True)

    def __repr__(self):
        return f"<Coupon(code='{self.code}', type='{self.discount_type}')>"


class ShippingZone(Base):
    __tablename__ = "shipping_zones"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    postal_prefix = Column(String(16), nullable=False, index=True)
    base_rate = Column(Float, nullable=True)
    region_multiplier = Column(Float, nullable=True)
    express_multiplier = Column(Float, nullable=True)
    free_shipping_threshold = Column(Float, nullable=True)
    # [{"min_weight": 0, "max_weight": 5, "rate": 20}, ...]
    weight_rates = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, server_default=true(), index=True)

    def __repr__(self):
        return f"<ShippingZone(prefix='{self.postal_prefix}', base_rate={self.base_rate})>"


class SiteSetting(Base):
    __tablename__ = "site_settings"

    key = Column(String(128), primary_key=True)
    value = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
