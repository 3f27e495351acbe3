"""Property-based tests for deal pricing and order totals.

Prices are drawn as whole cents so every generated price is a valid
two-decimal amount; discounts, quantities and tax rates are drawn as
integers over generous ranges, including discounts larger than the price.
"""
import asyncio
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from order_pricing import config, deals, totals
from order_pricing.schemas import TotalsRequest
from factories import NOW, FakeCatalog, coupon, deal, product


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

cents = st.integers(min_value=1, max_value=10_000_000)
percentages = st.integers(min_value=0, max_value=100)


@st.composite
def deal_sets(draw):
    """Deals with random kinds and values, plus the target set each one resolved to."""
    count = draw(st.integers(min_value=0, max_value=8))
    deal_list, targets = [], {}
    for index in range(count):
        deal_id = f"deal-{index:02d}"
        discount_type = draw(st.sampled_from(["percentage", "fixed", "flat", "bogo"]))
        discount_value = draw(st.integers(min_value=0, max_value=200_000)) / 100
        is_global = draw(st.booleans())
        deal_list.append(deal(deal_id, discount_type, discount_value, is_global=is_global))
        if is_global:
            targets[deal_id] = None
        else:
            targets[deal_id] = frozenset(draw(st.sets(st.sampled_from(["A", "B", "C"]), max_size=3)))
    return deal_list, targets


@st.composite
def carts(draw):
    """A catalog and a totals request over it, with an optional coupon."""
    lines = draw(st.lists(
        st.tuples(
            st.integers(min_value=-10_000, max_value=10_000_000), # price in cents
            st.integers(min_value=1, max_value=20), # quantity
            st.integers(min_value=0, max_value=40), # tax percentage
        ),
        min_size=1,
        max_size=6,
    ))
    products = [
        product(f"p{index}", price=price / 100, tax=tax, weight=1)
        for index, (price, _, tax) in enumerate(lines)
    ]
    items = [{"product": f"p{index}", "quantity": quantity} for index, (_, quantity, _) in enumerate(lines)]

    coupons = []
    fields = {
        "items": items,
        "payment_method": draw(st.sampled_from(["prepaid", "cod"])),
        "shipping_method": draw(st.sampled_from(["standard", "express"])),
        "address": {"postal_code": "560001"},
    }
    if draw(st.booleans()):
        discount_type = draw(st.sampled_from(["percentage", "fixed"]))
        if discount_type == "percentage":
            discount_value = draw(st.integers(min_value=0, max_value=250))
        else:
            discount_value = draw(st.integers(min_value=0, max_value=20_000_000)) / 100
        coupons.append(coupon("c1", discount_type, discount_value))
        fields["coupon"] = "c1"

    catalog = FakeCatalog(
        products=products,
        coupons=coupons,
        settings={config.COD_FEE_SETTING_KEY: draw(st.integers(min_value=-50, max_value=100))},
    )
    return catalog, TotalsRequest.model_validate(fields)


# ===========================================================================
# Deal price
# ===========================================================================

class TestDealPriceProperties:

    @given(cents, percentages)
    @settings(max_examples=300)
    def test_percentage_price_is_rounded_half_up_to_cents(self, price_cents, percent):
        price = price_cents / 100
        deal_price = deals.calculate_deal_price(price, deal("d", "percentage", percent))

        exact = Decimal(price_cents) * (100 - percent) / Decimal(10_000)
        assert round(deal_price, 2) == deal_price
        assert abs(Decimal(str(deal_price)) - exact) <= Decimal("0.005")
        assert deal_price == deals.round_half_up(price - price * percent / 100)

    @given(cents, percentages)
    @settings(max_examples=300)
    def test_percentage_price_never_exceeds_the_original(self, price_cents, percent):
        price = price_cents / 100
        deal_price = deals.calculate_deal_price(price, deal("d", "percentage", percent))

        assert 0 <= deal_price <= price
        # A discount worth at least one cent always lowers the price
        if price_cents * percent >= 100:
            assert deal_price < price

    @given(cents, st.integers(min_value=0, max_value=20_000_000))
    @settings(max_examples=200)
    def test_fixed_price_is_clamped_at_zero(self, price_cents, off_cents):
        price = price_cents / 100
        deal_price = deals.calculate_deal_price(price, deal("d", "fixed", off_cents / 100))

        assert 0 <= deal_price <= price
        if off_cents >= price_cents:
            assert deal_price == 0
        elif off_cents > 0:
            assert deal_price < price


# ===========================================================================
# Best deal
# ===========================================================================

class TestBestDealProperties:

    @given(cents, deal_sets())
    @settings(max_examples=300)
    def test_best_deal_is_the_first_lowest_targeting_deal(self, price_cents, generated):
        deal_list, targets = generated
        item = product("A", price=price_cents / 100)
        price = deals.original_price(item)

        candidates = [
            (deals.calculate_deal_price(price, candidate), candidate.id)
            for candidate in deal_list
            if deals.is_product_affected("A", candidate, targets[candidate.id])
        ]
        improving = [candidate for candidate in candidates if candidate[0] < price]

        best = deals.find_best_deal(item, deal_list, targets)
        if not improving:
            assert best is None
            return

        lowest = min(deal_price for deal_price, _ in improving)
        first_lowest = next(deal_id for deal_price, deal_id in improving if deal_price == lowest)
        assert best is not None
        assert best.id == first_lowest
        assert deals.is_product_affected("A", best, targets[best.id])
        assert deals.calculate_deal_price(price, best) == lowest

    @given(cents, deal_sets())
    @settings(max_examples=200)
    def test_priced_product_never_costs_more_than_the_original(self, price_cents, generated):
        deal_list, targets = generated
        pricing = deals.price_product(product("A", price=price_cents / 100), deal_list, targets)

        if pricing.applied_deal_id is None:
            assert pricing.deal_price is None
        else:
            assert 0 <= pricing.deal_price < pricing.original_price


# ===========================================================================
# Order totals
# ===========================================================================

class TestTotalsProperties:

    @given(carts())
    @settings(max_examples=150, deadline=None)
    def test_final_total_is_never_negative(self, generated):
        catalog, request = generated
        result = asyncio.run(totals.calculate_totals(catalog, request, NOW))

        assert result.final_total >= 0
        assert 0 <= result.discount <= result.subtotal
        assert result.tax_total >= 0
        assert result.shipping_fee >= 0
        assert result.cod_fee >= 0
        if request.payment_method != "cod":
            assert result.cod_fee == 0
