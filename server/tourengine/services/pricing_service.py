"""Pricing calculator: discounts, cap, floor and deposit for a booking price."""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.config import settings
from ..core.exceptions import ValidationError
from ..models.guide import DepositType, GuideProfile
from ..schemas.pricing import (
    DepositPolicy,
    EarlyBirdSettings,
    GroupDiscountSettings,
    LastMinuteSettings,
    PriceBreakdown,
    PricingPolicy,
    parse_policy_json,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_cents(amount: Decimal) -> Decimal:
    """Quantize a money amount to cents, rounding half up."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Money amount as an integer number of cents."""
    return int(to_cents(amount) * 100)


def _percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    return amount * Decimal(percent) / HUNDRED


def _early_bird_percent(settings_: EarlyBirdSettings, days_until_tour: int) -> Optional[Decimal]:
    if days_until_tour >= settings_.tier1_days:
        return settings_.tier1_percent
    if days_until_tour >= settings_.tier2_days:
        return settings_.tier2_percent
    if days_until_tour >= settings_.tier3_days:
        return settings_.tier3_percent
    return None


def _group_percent(settings_: GroupDiscountSettings, participants: int) -> Optional[Decimal]:
    if participants >= settings_.tier3_min:
        return settings_.tier3_percent
    if settings_.tier2_min <= participants <= settings_.tier2_max:
        return settings_.tier2_percent
    if settings_.tier1_min <= participants <= settings_.tier1_max:
        return settings_.tier1_percent
    return None


def _deposit_for(price: Decimal, policy: DepositPolicy) -> Decimal:
    if policy.deposit_type == DepositType.PERCENTAGE:
        deposit = _percent_of(price, policy.amount)
    elif policy.deposit_type == DepositType.FIXED:
        deposit = policy.amount
    else:
        # No deposit scheme: the whole price is collected upfront
        deposit = price
    return min(deposit, price)


def compute_price(
    base_price: Decimal,
    participants: int,
    days_until_tour: int,
    early_bird: Optional[EarlyBirdSettings] = None,
    group_discount: Optional[GroupDiscountSettings] = None,
    last_minute: Optional[LastMinuteSettings] = None,
    deposit_policy: Optional[DepositPolicy] = None,
    discounts_disabled: bool = False,
    max_discount_percent: Optional[Decimal] = None,
    min_price: Optional[Decimal] = None,
) -> PriceBreakdown:
    """
    Compute the discounted price and deposit split for a booking.

    Discounts compound on the running price in a fixed order: early bird,
    group, then last minute (only when no early bird tier fired). If their
    sum exceeds the cap, the capped amount comes off the base instead and the
    components are reported as computed. A floor price then applies.

    Args:
        base_price: Undiscounted price of the booking
        participants: Number of participants
        days_until_tour: Whole days between now and the tour date
        early_bird: Lead-time discount tiers
        group_discount: Participant-count discount bands
        last_minute: Short-notice discount
        deposit_policy: Deposit scheme, defaults to a zero percentage deposit
        discounts_disabled: Skip every discount and the floor
        max_discount_percent: Cap on the aggregate discount, defaults to settings
        min_price: Floor price, defaults to settings

    Returns:
        PriceBreakdown with every amount rounded to cents

    Raises:
        ValidationError: If base price is negative or participants < 1
    """
    base_price = Decimal(base_price)
    if base_price < 0:
        raise ValidationError(detail="Base price cannot be negative")
    if participants < 1:
        raise ValidationError(detail="At least one participant is required")

    deposit_policy = deposit_policy or DepositPolicy()
    cap_percent = settings.max_discount_percent if max_discount_percent is None else max_discount_percent
    floor = settings.min_price if min_price is None else min_price

    if discounts_disabled or base_price == 0:
        deposit = _deposit_for(base_price, deposit_policy)
        return PriceBreakdown(
            base_price=to_cents(base_price),
            early_bird_discount=ZERO,
            group_discount=ZERO,
            last_minute_discount=ZERO,
            total_discount=ZERO,
            final_price=to_cents(base_price),
            deposit_amount=to_cents(deposit),
            final_payment_amount=to_cents(base_price) - to_cents(deposit),
        )

    price = base_price
    early_bird_amount = ZERO
    group_amount = ZERO
    last_minute_amount = ZERO

    if early_bird is not None and early_bird.enabled:
        percent = _early_bird_percent(early_bird, days_until_tour)
        if percent is not None:
            early_bird_amount = _percent_of(price, percent)
            price -= early_bird_amount

    if group_discount is not None and group_discount.enabled and participants > 1:
        percent = _group_percent(group_discount, participants)
        if percent is not None:
            group_amount = _percent_of(price, percent)
            price -= group_amount

    if last_minute is not None and last_minute.enabled and early_bird_amount == 0:
        if days_until_tour * 24 <= last_minute.hours:
            last_minute_amount = _percent_of(price, last_minute.percent)
            price -= last_minute_amount

    max_discount = _percent_of(base_price, cap_percent)
    if early_bird_amount + group_amount + last_minute_amount > max_discount:
        price = base_price - max_discount

    final_price = to_cents(max(price, floor))
    deposit = to_cents(_deposit_for(final_price, deposit_policy))

    return PriceBreakdown(
        base_price=to_cents(base_price),
        early_bird_discount=to_cents(early_bird_amount),
        group_discount=to_cents(group_amount),
        last_minute_discount=to_cents(last_minute_amount),
        total_discount=to_cents(base_price) - final_price,
        final_price=final_price,
        deposit_amount=deposit,
        final_payment_amount=final_price - deposit,
    )


def policy_for_guide(guide: GuideProfile) -> PricingPolicy:
    """
    Parse a guide's stored pricing settings into value types.

    Raises:
        ValidationError: If any stored settings blob is malformed
    """
    try:
        return PricingPolicy(
            early_bird=parse_policy_json(guide.early_bird_settings, EarlyBirdSettings),
            group_discount=parse_policy_json(guide.group_discount_settings, GroupDiscountSettings),
            last_minute=parse_policy_json(guide.last_minute_settings, LastMinuteSettings),
            deposit=DepositPolicy(
                deposit_type=DepositType(guide.deposit_type),
                amount=guide.deposit_amount,
            ),
            discounts_disabled=guide.discounts_disabled,
        )
    except (PydanticValidationError, ValueError) as e:
        logger.warning(
            "Guide pricing policy is malformed",
            extra={"guide_id": guide.guide_id, "error": str(e)}
        )
        raise ValidationError(
            detail=f"Pricing policy of guide '{guide.guide_id}' is malformed: {e}"
        ) from e


def compute_price_for_policy(
    policy: PricingPolicy,
    base_price: Decimal,
    participants: int,
    days_until_tour: Optional[int],
    apply_discounts: bool = True,
) -> PriceBreakdown:
    """
    Run the calculator with every setting taken from a guide policy.

    With no tour date (``days_until_tour`` is None) the date-driven discounts,
    early bird and last minute, do not apply.
    """
    dated = days_until_tour is not None
    return compute_price(
        base_price=base_price,
        participants=participants,
        days_until_tour=days_until_tour if dated else 0,
        early_bird=policy.early_bird if dated else None,
        group_discount=policy.group_discount,
        last_minute=policy.last_minute if dated else None,
        deposit_policy=policy.deposit,
        discounts_disabled=policy.discounts_disabled or not apply_discounts,
    )
