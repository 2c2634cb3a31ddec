"""Rate plan pricing rules.

A rate plan is a named pricing policy. It may derive from a parent plan
(percentage or fixed offset, then rounded) and it prices occupancy
relative to the double-occupancy nightly price:

- 1 adult: single adjustment
- 2 adults: the nightly price itself
- 3 adults: triple adjustment
- 4 adults: quad adjustment
- 5+ adults: quad price plus one extra-adult charge per adult beyond four

Children are priced by age tier (up to three sequential tiers, each
covering ages up to its max age). All amounts are integer cents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Sequence

PERCENTAGE = "PERCENTAGE"
FIXED_AMOUNT = "FIXED_AMOUNT"
ADJUSTMENT_TYPES = (PERCENTAGE, FIXED_AMOUNT)

ROUNDING_RULES = (
    "NONE",
    "NEAREST_WHOLE",
    "ENDING_99",
    "ENDING_90",
    "MULTIPLE_5",
    "MULTIPLE_10",
)

MAX_TIERED_ADULTS = 4


@dataclass(frozen=True)
class Adjustment:
    """Percentage (of the base) or fixed amount (in cents) added to a price."""

    type: str
    value: Decimal

    def apply(self, base_cents: int | Decimal) -> Decimal:
        base = Decimal(base_cents)
        if self.type == PERCENTAGE:
            return base * (Decimal(1) + self.value / Decimal(100))
        if self.type == FIXED_AMOUNT:
            return base + self.value
        raise ValueError(f"unknown adjustment type: {self.type}")

    @classmethod
    def from_columns(cls, type_: str | None, value: object) -> Adjustment | None:
        if type_ is None or value is None:
            return None
        return cls(type=type_, value=Decimal(str(value)))


@dataclass(frozen=True)
class ChildTier:
    max_age: int
    price_cents: int


@dataclass(frozen=True)
class RatePlan:
    id: str
    code: str
    name: str
    parent_id: str | None = None
    parent_code: str | None = None
    derived: Adjustment | None = None
    rounding_rule: str = "NONE"
    single: Adjustment | None = None
    triple: Adjustment | None = None
    quad: Adjustment | None = None
    extra_adult: Adjustment | None = None
    child_tiers: tuple[ChildTier, ...] = field(default_factory=tuple)
    cancellation_policy: str | None = None

    @property
    def is_derived(self) -> bool:
        return self.parent_code is not None and self.derived is not None


def _half_up(amount: Decimal) -> int:
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def apply_rounding(amount_cents: int | Decimal, rule: str) -> int:
    """Round a price in cents to the plan's display rule.

    Rules operate on whole currency units: ENDING_99 turns 123.45 into
    123.99, MULTIPLE_5 turns 123.45 into 125.00, NONE keeps the cents.
    """
    cents = Decimal(amount_cents)

    if rule == "NONE":
        return _half_up(cents)
    if rule == "NEAREST_WHOLE":
        return _half_up(cents / 100) * 100
    if rule == "ENDING_99":
        return int((cents / 100).to_integral_value(rounding=ROUND_FLOOR)) * 100 + 99
    if rule == "ENDING_90":
        return int((cents / 100).to_integral_value(rounding=ROUND_FLOOR)) * 100 + 90
    if rule == "MULTIPLE_5":
        return _half_up(cents / 500) * 500
    if rule == "MULTIPLE_10":
        return _half_up(cents / 1000) * 1000
    raise ValueError(f"unknown rounding rule: {rule}")


def derive_price(parent_cents: int, plan: RatePlan) -> int:
    """Nightly price of a derived plan from its parent's resolved price."""
    if plan.derived is None:
        return parent_cents
    adjusted = plan.derived.apply(parent_cents)
    return max(0, apply_rounding(adjusted, plan.rounding_rule))


def adults_price(double_cents: int, plan: RatePlan | None, adults: int) -> int:
    """Nightly price for `adults` given the double-occupancy price."""
    if plan is None or adults == 2:
        return double_cents

    if adults == 1:
        tier = plan.single
    elif adults == 3:
        tier = plan.triple
    else:
        tier = plan.quad

    price = tier.apply(double_cents) if tier is not None else Decimal(double_cents)

    if adults > MAX_TIERED_ADULTS and plan.extra_adult is not None:
        # Charge per extra adult is the adjustment's delta over the double price
        extra = plan.extra_adult.apply(double_cents) - Decimal(double_cents)
        price += extra * (adults - MAX_TIERED_ADULTS)

    return max(0, _half_up(price))


def child_price(plan: RatePlan | None, age: int | None) -> int:
    """Nightly charge for one child.

    Tiers are sequential: the first tier whose max age covers the child
    wins. A child without a known age is priced at the oldest tier; a child
    older than every tier is free here (priced as an adult by the caller's
    occupancy rules, if at all).
    """
    if plan is None or not plan.child_tiers:
        return 0
    if age is None:
        return plan.child_tiers[-1].price_cents
    for tier in plan.child_tiers:
        if age <= tier.max_age:
            return tier.price_cents
    return 0


def nightly_price(
    double_cents: int,
    plan: RatePlan | None,
    *,
    adults: int,
    children: int,
    children_ages: Sequence[int] | None = None,
) -> int:
    """Nightly price for a full party: occupancy tier plus child charges."""
    total = adults_price(double_cents, plan, adults)
    ages: list[int | None] = list(children_ages or [])
    ages += [None] * (children - len(ages))
    for age in ages[:children]:
        total += child_price(plan, age)
    return total


# Guards against a misconfigured parent chain that loops back on itself
MAX_DERIVATION_DEPTH = 5


def resolve_base_price(
    rate_plan_code: str,
    *,
    room_type_id: str,
    day: date,
    plans_by_code: Mapping[str, RatePlan],
    rates: Mapping[tuple[str, str, date], Mapping[str, Any]],
    inventory_price_cents: int | None,
    _depth: int = 0,
) -> int | None:
    """Double-occupancy nightly price of a plan before occupancy rules.

    An explicit rate row wins; a derived plan otherwise takes its parent's
    resolved price adjusted and rounded; anything else falls back to the
    inventory row's base price.
    """
    row = rates.get((room_type_id, rate_plan_code, day))
    if row is not None:
        return row["amount_cents"]

    plan = plans_by_code.get(rate_plan_code)
    if plan is not None and plan.is_derived and _depth < MAX_DERIVATION_DEPTH:
        parent_cents = resolve_base_price(
            plan.parent_code,
            room_type_id=room_type_id,
            day=day,
            plans_by_code=plans_by_code,
            rates=rates,
            inventory_price_cents=inventory_price_cents,
            _depth=_depth + 1,
        )
        if parent_cents is not None:
            return derive_price(parent_cents, plan)

    return inventory_price_cents
