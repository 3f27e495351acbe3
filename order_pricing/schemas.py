from pydantic import (
    AfterValidator, AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, conint, field_validator,
)
from typing import Annotated, Any, List, Literal, Optional, Union
import datetime
import math


# --- Boundary normalisers ---

def ref_to_id(value: Any) -> Optional[str]:
    """
    Normalizes a reference to its canonical string id.
    Accepts a raw id, a partial document ({"_id": ...} / {"id": ...})
    or any object exposing an `id` attribute (e.g. an ORM row).
    """
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
    elif not isinstance(value, (str, int)) and hasattr(value, "id"):
        value = value.id
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def refs_to_ids(values: Any) -> List[str]:
    if not values:
        return []
    ids = (ref_to_id(value) for value in values)
    return [ref_id for ref_id in ids if ref_id]


def lenient_number(value: Any) -> Optional[float]:
    """Non-numeric or non-finite input becomes None instead of a validation error."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def number_or_zero(value: Any) -> float:
    number = lenient_number(value)
    return 0.0 if number is None else number


def as_utc(value: datetime.datetime) -> datetime.datetime:
    # Naive timestamps (e.g. read back from SQLite) are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


RefId = Annotated[str, BeforeValidator(ref_to_id)]
OptionalRefId = Annotated[Optional[str], BeforeValidator(ref_to_id)]
LenientFloat = Annotated[Optional[float], BeforeValidator(lenient_number)]
Amount = Annotated[float, BeforeValidator(number_or_zero)]
UtcDatetime = Annotated[datetime.datetime, AfterValidator(as_utc)]

ShippingMethod = Literal["standard", "express"]
FreeShippingReason = Literal["global_setting", "threshold", "coupon"]


# --- Catalog snapshots (read-only input to the pricing core) ---

class VariantSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: RefId = Field(validation_alias=AliasChoices("id", "_id"))
    price: LenientFloat = None # Overrides the product price when set
    sku: Optional[str] = None


class ProductSnapshot(BaseModel):
    # Display fields (name, images, ...) pass through untouched
    model_config = ConfigDict(from_attributes=True, extra="allow")

    id: RefId = Field(validation_alias=AliasChoices("id", "_id"))
    name: Optional[str] = None
    price: LenientFloat = None
    sale_price: LenientFloat = None
    tax: LenientFloat = None # Percentage
    weight: LenientFloat = None # KG
    shipping_fee: LenientFloat = None # Handling fee per unit
    shipping_class: Optional[str] = None
    category_id: OptionalRefId = None
    sub_category_id: OptionalRefId = None
    is_active: bool = True
    deleted_at: Optional[UtcDatetime] = None
    variants: List[VariantSnapshot] = Field(default_factory=list)

    @field_validator("variants", mode="before")
    @classmethod
    def _variants_default(cls, value):
        return [] if value is None else value


class DealPricing(BaseModel):
    original_price: float
    deal_price: Optional[float] = None
    applied_deal_id: Optional[str] = None
    applied_deal_variant: Optional[str] = None


class PricedProduct(ProductSnapshot, DealPricing):
    """A product snapshot annotated with the outcome of deal evaluation."""


class DealSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: RefId = Field(validation_alias=AliasChoices("id", "_id"))
    title: Optional[str] = None
    is_active: bool = True
    start_date: UtcDatetime
    end_date: UtcDatetime
    discount_type: str # percentage | fixed | flat; anything else is a no-op
    discount_value: Amount = 0.0
    is_global: bool = False
    products: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    sub_categories: List[str] = Field(default_factory=list)
    deal_variant: Optional[str] = None

    @field_validator("products", "categories", "sub_categories", mode="before")
    @classmethod
    def _normalize_refs(cls, value):
        return refs_to_ids(value)


class CouponSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: RefId = Field(validation_alias=AliasChoices("id", "_id"))
    code: Optional[str] = None
    is_active: bool = True
    start_date: Optional[UtcDatetime] = None
    expiry_date: Optional[UtcDatetime] = None
    min_cart_value: Amount = 0.0
    discount_type: str # percentage | fixed | free_shipping
    discount_value: Amount = 0.0
    max_discount: LenientFloat = None


class WeightTier(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    min_weight: Amount = 0.0
    max_weight: Amount = 0.0
    rate: Amount = 0.0


class ShippingZoneSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: RefId = Field(validation_alias=AliasChoices("id", "_id"))
    name: Optional[str] = None
    postal_prefix: str
    base_rate: LenientFloat = None
    region_multiplier: LenientFloat = None
    express_multiplier: LenientFloat = None
    free_shipping_threshold: LenientFloat = None
    weight_rates: List[WeightTier] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("weight_rates", mode="before")
    @classmethod
    def _tiers_default(cls, value):
        return [] if value is None else value


# --- Requests ---

class LineItem(BaseModel):
    product_id: RefId = Field(validation_alias=AliasChoices("product_id", "product"))
    quantity: conint(ge=1) # Quantity >= 1
    variant_id: OptionalRefId = None


class Address(BaseModel):
    postal_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("postal_code", "pincode"))
    city: Optional[str] = None
    country: Optional[str] = None


class TotalsRequest(BaseModel):
    items: List[LineItem] = Field(default_factory=list)
    coupon: Union[CouponSnapshot, str, None] = None # Coupon id or an already-fetched coupon
    shipping_method: ShippingMethod = "standard"
    payment_method: str = "prepaid"
    address: Address = Field(default_factory=Address)

    @field_validator("coupon", mode="before")
    @classmethod
    def _coupon_reference(cls, value):
        # A partial document carrying only its id is a reference, not a coupon
        if isinstance(value, dict) and set(value) <= {"_id", "id"}:
            return ref_to_id(value)
        return value


class CheckoutTotalsRequest(TotalsRequest):
    """
    Totals request as accepted over HTTP. The coupon is always looked up in
    the store, so clients may only name it by id or by an {"_id": ...} reference.
    """
    coupon: Optional[str] = None

    @field_validator("coupon", mode="before")
    @classmethod
    def _coupon_reference(cls, value):
        if isinstance(value, dict):
            if not set(value) <= {"_id", "id"}:
                raise ValueError("coupon must be an id or an {\"_id\": ...} reference")
            return ref_to_id(value)
        if isinstance(value, (str, int)):
            return ref_to_id(value)
        return value


class ProductPricingRequest(BaseModel):
    product_ids: List[RefId] = Field(..., min_length=1)


# --- Results ---

class PricedLineItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int
    unit_price: float = Field(ge=0)
    line_total: float = Field(ge=0)
    line_tax: float = Field(ge=0, default=0.0)
    product: PricedProduct


class ShippingBreakdown(BaseModel):
    zone_id: Optional[str] = None
    base_rate: float
    handling_fee: float = 0.0
    weight_charge: float = 0.0
    region_multiplier: float = 1.0
    class_multiplier: float = 1.0
    express_multiplier: float = 1.0
    free_shipping_threshold: float
    calculated_fee: float = Field(ge=0) # Before free-shipping overrides
    fee: float = Field(ge=0)
    free_shipping_reason: Optional[FreeShippingReason] = None


class TotalsResult(BaseModel):
    subtotal: float = Field(ge=0)
    tax_total: float = Field(ge=0, default=0.0)
    discount: float = Field(ge=0, default=0.0)
    shipping_fee: float = Field(ge=0, default=0.0)
    cod_fee: float = Field(ge=0, default=0.0)
    final_total: float = Field(ge=0)
    applied_coupon: Optional[CouponSnapshot] = None
    items: List[PricedLineItem] = Field(default_factory=list)
    total_weight: float = Field(ge=0, default=0.0)
    shipping: ShippingBreakdown
    missing_product_ids: List[str] = Field(default_factory=list) # Data-integrity warnings
    degraded_lookups: List[str] = Field(default_factory=list) # Lookups that fell back to defaults
