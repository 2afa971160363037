"""Unit tests for the pricing calculator."""

from decimal import Decimal

import pytest

from tourengine.core.exceptions import ValidationError
from tourengine.models.guide import DepositType, GuideProfile
from tourengine.schemas.pricing import (
    DepositPolicy,
    EarlyBirdSettings,
    GroupDiscountSettings,
    LastMinuteSettings,
)
from tourengine.services.pricing_service import (
    compute_price,
    compute_price_for_policy,
    policy_for_guide,
    to_cents,
    to_minor_units,
)

EARLY_BIRD = EarlyBirdSettings(
    tier1_days=60, tier1_percent=Decimal("20"),
    tier2_days=30, tier2_percent=Decimal("15"),
    tier3_days=7, tier3_percent=Decimal("10"),
)
GROUP = GroupDiscountSettings(
    tier1_min=3, tier1_max=4, tier1_percent=Decimal("5"),
    tier2_min=5, tier2_max=7, tier2_percent=Decimal("10"),
    tier3_min=8, tier3_percent=Decimal("15"),
)
LAST_MINUTE = LastMinuteSettings(hours=48, percent=Decimal("10"))
TWENTY_PERCENT_DEPOSIT = DepositPolicy(deposit_type=DepositType.PERCENTAGE, amount=Decimal("20"))


def test_early_bird_with_percentage_deposit():
    """Base 100 ten days out hits the 7-day tier: 90 total, 18 deposit, 72 later."""
    result = compute_price(
        base_price=Decimal("100"),
        participants=1,
        days_until_tour=10,
        early_bird=EARLY_BIRD,
        deposit_policy=TWENTY_PERCENT_DEPOSIT,
    )

    assert result.early_bird_discount == Decimal("10.00")
    assert result.group_discount == Decimal("0")
    assert result.last_minute_discount == Decimal("0")
    assert result.final_price == Decimal("90.00")
    assert result.deposit_amount == Decimal("18.00")
    assert result.final_payment_amount == Decimal("72.00")


def test_early_bird_first_matching_tier_wins():
    result = compute_price(Decimal("100"), 1, 90, early_bird=EARLY_BIRD)
    assert result.early_bird_discount == Decimal("20.00")

    result = compute_price(Decimal("100"), 1, 45, early_bird=EARLY_BIRD)
    assert result.early_bird_discount == Decimal("15.00")

    result = compute_price(Decimal("100"), 1, 3, early_bird=EARLY_BIRD)
    assert result.early_bird_discount == Decimal("0")


def test_group_discount_compounds_on_early_bird_price():
    result = compute_price(
        Decimal("1000"), participants=5, days_until_tour=10, early_bird=EARLY_BIRD, group_discount=GROUP
    )

    # 10% off 1000, then 10% off the remaining 900
    assert result.early_bird_discount == Decimal("100.00")
    assert result.group_discount == Decimal("90.00")
    assert result.final_price == Decimal("810.00")


def test_group_discount_bands():
    assert compute_price(Decimal("100"), 2, 0, group_discount=GROUP).group_discount == Decimal("0")
    assert compute_price(Decimal("100"), 3, 0, group_discount=GROUP).group_discount == Decimal("5.00")
    assert compute_price(Decimal("100"), 7, 0, group_discount=GROUP).group_discount == Decimal("10.00")
    assert compute_price(Decimal("100"), 30, 0, group_discount=GROUP).group_discount == Decimal("15.00")


def test_group_discount_skipped_for_single_participant():
    lenient = GroupDiscountSettings(
        tier1_min=1, tier1_max=2, tier1_percent=Decimal("10"),
        tier2_min=3, tier2_max=4, tier2_percent=Decimal("15"),
        tier3_min=5, tier3_percent=Decimal("20"),
    )
    result = compute_price(Decimal("100"), 1, 0, group_discount=lenient)
    assert result.group_discount == Decimal("0")


def test_last_minute_applies_only_without_early_bird():
    result = compute_price(Decimal("100"), 1, 1, early_bird=EARLY_BIRD, last_minute=LAST_MINUTE)
    assert result.early_bird_discount == Decimal("0")
    assert result.last_minute_discount == Decimal("10.00")
    assert result.final_price == Decimal("90.00")

    early = EarlyBirdSettings(
        tier1_days=1, tier1_percent=Decimal("5"),
        tier2_days=1, tier2_percent=Decimal("5"),
        tier3_days=1, tier3_percent=Decimal("5"),
    )
    result = compute_price(Decimal("100"), 1, 1, early_bird=early, last_minute=LAST_MINUTE)
    assert result.early_bird_discount == Decimal("5.00")
    assert result.last_minute_discount == Decimal("0")


def test_last_minute_window_is_inclusive():
    assert compute_price(Decimal("100"), 1, 2, last_minute=LAST_MINUTE).last_minute_discount == Decimal("10.00")
    assert compute_price(Decimal("100"), 1, 3, last_minute=LAST_MINUTE).last_minute_discount == Decimal("0")


def test_aggregate_discount_is_capped():
    """When the components exceed 40% the capped amount comes off the base."""
    greedy = EarlyBirdSettings(
        tier1_days=0, tier1_percent=Decimal("50"),
        tier2_days=0, tier2_percent=Decimal("50"),
        tier3_days=0, tier3_percent=Decimal("50"),
    )
    result = compute_price(Decimal("200"), 10, 5, early_bird=greedy, group_discount=GROUP)

    assert result.final_price == Decimal("120.00")
    assert result.total_discount == Decimal("80.00")
    # Components stay as computed and do not sum to the applied discount
    assert result.early_bird_discount == Decimal("100.00")
    assert result.group_discount == Decimal("15.00")


def test_floor_price_applies():
    result = compute_price(Decimal("25"), 1, 90, early_bird=EARLY_BIRD)
    assert result.final_price == Decimal("20.00")


def test_discounts_disabled_skips_discounts_and_floor():
    result = compute_price(
        Decimal("10"),
        1,
        90,
        early_bird=EARLY_BIRD,
        deposit_policy=TWENTY_PERCENT_DEPOSIT,
        discounts_disabled=True,
    )
    assert result.final_price == Decimal("10.00")
    assert result.total_discount == Decimal("0")
    assert result.deposit_amount == Decimal("2.00")


def test_zero_base_price_is_free():
    result = compute_price(Decimal("0"), 3, 90, early_bird=EARLY_BIRD)
    assert result.final_price == Decimal("0.00")
    assert result.deposit_amount == Decimal("0.00")


def test_fixed_deposit_is_capped_at_final_price():
    policy = DepositPolicy(deposit_type=DepositType.FIXED, amount=Decimal("500"))
    result = compute_price(Decimal("100"), 1, 0, deposit_policy=policy)
    assert result.deposit_amount == Decimal("100.00")
    assert result.final_payment_amount == Decimal("0.00")


def test_no_deposit_scheme_collects_full_price():
    policy = DepositPolicy(deposit_type=DepositType.NONE)
    result = compute_price(Decimal("80"), 1, 0, deposit_policy=policy)
    assert result.deposit_amount == Decimal("80.00")
    assert result.final_payment_amount == Decimal("0.00")


def test_invalid_inputs_rejected():
    with pytest.raises(ValidationError):
        compute_price(Decimal("-1"), 1, 0)
    with pytest.raises(ValidationError):
        compute_price(Decimal("100"), 0, 0)


def test_settings_validated_at_construction():
    with pytest.raises(ValueError):
        EarlyBirdSettings(
            tier1_days=7, tier1_percent=Decimal("10"),
            tier2_days=30, tier2_percent=Decimal("10"),
            tier3_days=1, tier3_percent=Decimal("10"),
        )
    with pytest.raises(ValueError):
        LastMinuteSettings(hours=24, percent=Decimal("120"))
    with pytest.raises(ValueError):
        DepositPolicy(deposit_type=DepositType.PERCENTAGE, amount=Decimal("150"))


def test_policy_for_guide_parses_stored_settings():
    guide = GuideProfile(
        guide_id="guide-x",
        display_name="X",
        early_bird_settings=EARLY_BIRD.model_dump(mode="json"),
        group_discount_settings={},
        last_minute_settings=None,
        discounts_disabled=False,
        deposit_type="fixed",
        deposit_amount=Decimal("30"),
    )
    policy = policy_for_guide(guide)

    assert policy.early_bird == EARLY_BIRD
    assert policy.group_discount is None
    assert policy.deposit.deposit_type == DepositType.FIXED

    breakdown = compute_price_for_policy(policy, Decimal("100"), 1, 10)
    assert breakdown.final_price == Decimal("90.00")
    assert breakdown.deposit_amount == Decimal("30.00")


def test_policy_for_guide_rejects_malformed_settings():
    guide = GuideProfile(
        guide_id="guide-bad",
        display_name="Bad",
        early_bird_settings={"tier1_days": "soon"},
        discounts_disabled=False,
        deposit_type="percentage",
        deposit_amount=Decimal("0"),
    )
    with pytest.raises(ValidationError):
        policy_for_guide(guide)


def test_money_rounding_half_up():
    assert to_cents(Decimal("10.005")) == Decimal("10.01")
    assert to_minor_units(Decimal("72.5")) == 7250
