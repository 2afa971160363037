"""Property-based tests for pricing invariants."""

from decimal import Decimal

from hypothesis import given
from hypothesis import strategies as st

from tourengine.models.guide import DepositType
from tourengine.schemas.pricing import (
    DepositPolicy,
    EarlyBirdSettings,
    GroupDiscountSettings,
    LastMinuteSettings,
)
from tourengine.services.pricing_service import compute_price, to_cents

CAP = Decimal("40")
FLOOR = Decimal("20")

# Strategies for generating test data
prices = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("20000"), places=2)
percents = st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=0)
participant_counts = st.integers(min_value=1, max_value=30)
lead_days = st.integers(min_value=0, max_value=400)

early_birds = st.builds(
    lambda p1, p2, p3: EarlyBirdSettings(
        tier1_days=60, tier1_percent=p1,
        tier2_days=30, tier2_percent=p2,
        tier3_days=7, tier3_percent=p3,
    ),
    percents, percents, percents,
)
group_discounts = st.builds(
    lambda p1, p2, p3: GroupDiscountSettings(
        tier1_min=3, tier1_max=4, tier1_percent=p1,
        tier2_min=5, tier2_max=7, tier2_percent=p2,
        tier3_min=8, tier3_percent=p3,
    ),
    percents, percents, percents,
)
last_minutes = st.builds(lambda p: LastMinuteSettings(hours=48, percent=p), percents)
deposits = st.one_of(
    st.builds(lambda p: DepositPolicy(deposit_type=DepositType.PERCENTAGE, amount=p), percents),
    st.builds(
        lambda a: DepositPolicy(deposit_type=DepositType.FIXED, amount=a),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("50000"), places=2),
    ),
    st.just(DepositPolicy(deposit_type=DepositType.NONE)),
)


def price_with(base, participants, days, early_bird, group, last_minute, deposit):
    return compute_price(
        base_price=base,
        participants=participants,
        days_until_tour=days,
        early_bird=early_bird,
        group_discount=group,
        last_minute=last_minute,
        deposit_policy=deposit,
        max_discount_percent=CAP,
        min_price=FLOOR,
    )


@given(
    base=prices,
    participants=participant_counts,
    days=lead_days,
    early_bird=st.none() | early_birds,
    group=st.none() | group_discounts,
    last_minute=st.none() | last_minutes,
    deposit=deposits,
)
def test_price_stays_within_floor_and_cap(base, participants, days, early_bird, group, last_minute, deposit):
    """The final price never drops below the floor or beyond the discount cap."""
    result = price_with(base, participants, days, early_bird, group, last_minute, deposit)

    assert result.final_price >= FLOOR
    assert result.final_price >= to_cents(base * (Decimal("100") - CAP) / Decimal("100"))
    assert result.total_discount == result.base_price - result.final_price


@given(
    base=st.decimals(min_value=FLOOR, max_value=Decimal("20000"), places=2),
    participants=participant_counts,
    days=lead_days,
    early_bird=st.none() | early_birds,
    group=st.none() | group_discounts,
    last_minute=st.none() | last_minutes,
)
def test_discounts_never_raise_the_price(base, participants, days, early_bird, group, last_minute):
    """Above the floor, discounting only ever lowers the price."""
    result = price_with(base, participants, days, early_bird, group, last_minute, None)

    assert result.final_price <= result.base_price
    assert result.total_discount >= 0


@given(
    base=prices,
    participants=participant_counts,
    days=lead_days,
    early_bird=st.none() | early_birds,
    deposit=deposits,
)
def test_deposit_splits_the_final_price(base, participants, days, early_bird, deposit):
    """Deposit and final payment are non-negative and add up to the final price."""
    result = price_with(base, participants, days, early_bird, None, None, deposit)

    assert Decimal("0") <= result.deposit_amount <= result.final_price
    assert result.final_payment_amount >= 0
    assert result.deposit_amount + result.final_payment_amount == result.final_price


@given(base=prices, participants=participant_counts, days=lead_days, early_bird=early_birds)
def test_disabled_discounts_charge_the_base(base, participants, days, early_bird):
    result = compute_price(
        base_price=base,
        participants=participants,
        days_until_tour=days,
        early_bird=early_bird,
        discounts_disabled=True,
    )

    assert result.final_price == to_cents(base)
    assert result.total_discount == Decimal("0")


@given(base=prices, days=lead_days, percent=percents)
def test_group_discount_needs_a_group(base, days, percent):
    group = GroupDiscountSettings(
        tier1_min=1, tier1_max=4, tier1_percent=percent,
        tier2_min=5, tier2_max=7, tier2_percent=percent,
        tier3_min=8, tier3_percent=percent,
    )

    result = price_with(base, 1, days, None, group, None, None)

    assert result.group_discount == Decimal("0")
