# backend/tabbit/domain/split_logic.py
from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from tabbit.domain.currency import CurrencyError, Number, round_half_away, to_fraction
from tabbit.domain.models import Assignment, Item, Rabbit


class SplitLogicError(ValueError):
    """Raised when split inputs are invalid."""


@dataclass(frozen=True)
class RabbitTotal:
    """
    What one participant owes, in smallest currency units.

    subtotal is rounded once after summing the real-valued item shares;
    tax and tip are computed from that rounded subtotal and rounded on
    their own.
    """
    rabbit_id: str
    subtotal: int
    tax: int
    tip: int
    total: int


@dataclass(frozen=True)
class SplitSummary:
    """
    Per-participant breakdown plus the receipt-level totals.

    grand_total is computed from the raw item sum and is not reconciled
    with the per-participant totals; the two may differ by a few units.
    """
    rabbit_totals: Tuple[RabbitTotal, ...]
    items_subtotal: int
    tax_amount: int
    tip_amount: int
    grand_total: int
    unassigned_item_count: int

    @property
    def totals_by_rabbit_id(self) -> Dict[str, int]:
        return {rt.rabbit_id: rt.total for rt in self.rabbit_totals}

    @property
    def rounding_drift(self) -> int:
        """sum(participant totals) - grand_total."""
        return sum(rt.total for rt in self.rabbit_totals) - self.grand_total

    def for_rabbit(self, rabbit_id: str) -> RabbitTotal:
        for rt in self.rabbit_totals:
            if rt.rabbit_id == rabbit_id:
                return rt
        raise KeyError(rabbit_id)


def _percent(value: Number, name: str) -> Fraction:
    try:
        return to_fraction(value) / 100
    except CurrencyError as e:
        raise SplitLogicError(f"{name} must be a finite number") from e


def _check_items(items: Sequence[Item]) -> None:
    seen: Set[str] = set()
    for item in items:
        if not isinstance(item.price_cents, int) or isinstance(item.price_cents, bool):
            raise SplitLogicError("item prices must be int smallest units")
        if item.price_cents < 0:
            raise SplitLogicError("item prices must be >= 0")
        if item.id in seen:
            raise SplitLogicError(f"duplicate item id: {item.id}")
        seen.add(item.id)


def unique_edges(
    assignments: Iterable[Assignment],
    item_ids: Set[str],
    rabbit_ids: Set[str],
) -> List[Assignment]:
    """
    Drop duplicate (item, rabbit) pairs and edges pointing at entities that
    are not in the bill. Order of first appearance is kept.
    """
    seen: Set[Tuple[str, str]] = set()
    out: List[Assignment] = []
    for a in assignments:
        key = (a.item_id, a.rabbit_id)
        if key in seen:
            continue
        if a.item_id not in item_ids or a.rabbit_id not in rabbit_ids:
            continue
        seen.add(key)
        out.append(a)
    return out


def split_counts(assignments: Iterable[Assignment]) -> Dict[str, int]:
    """item_id -> number of participants sharing it."""
    counts: Dict[str, int] = {}
    for a in assignments:
        counts[a.item_id] = counts.get(a.item_id, 0) + 1
    return counts


def rabbit_subtotal(rabbit_id: str, prices: Dict[str, int], assignments: Sequence[Assignment], counts: Dict[str, int]) -> int:
    """
    Sum of price/k over every item the rabbit holds, rounded once at the end.
    """
    share = Fraction(0)
    for a in assignments:
        if a.rabbit_id != rabbit_id:
            continue
        share += Fraction(prices[a.item_id], counts[a.item_id])
    return round_half_away(share)


def calculate_split(
    items: Sequence[Item],
    rabbits: Sequence[Rabbit],
    assignments: Iterable[Assignment],
    tax_percent: Number = 0,
    tip_percent: Number = 0,
) -> SplitSummary:
    """
    Turn items, participants and assignments into what everyone owes.

    Pure and deterministic; safe to call on every render.

    Per participant:
      subtotal = round(sum(price(i) / k(i)))
      tax      = round(subtotal * tax% / 100)
      tip      = round(subtotal * tip% / 100)
      total    = subtotal + tax + tip

    Receipt level (from the raw item sum, independent of the above):
      items_subtotal = sum(price(i))
      grand_total    = items_subtotal + round(items_subtotal * tax%) + round(items_subtotal * tip%)

    Items nobody holds still count toward items_subtotal and grand_total;
    they are reported through unassigned_item_count and never spread.
    """
    items = list(items)
    rabbits = list(rabbits)
    _check_items(items)

    tax_rate = _percent(tax_percent, "tax_percent")
    tip_rate = _percent(tip_percent, "tip_percent")

    prices = {item.id: item.price_cents for item in items}
    rabbit_ids = {r.id for r in rabbits}
    edges = unique_edges(assignments, set(prices), rabbit_ids)
    counts = split_counts(edges)

    rabbit_totals: List[RabbitTotal] = []
    for rabbit in rabbits:
        subtotal = rabbit_subtotal(rabbit.id, prices, edges, counts)
        tax = round_half_away(subtotal * tax_rate)
        tip = round_half_away(subtotal * tip_rate)
        rabbit_totals.append(
            RabbitTotal(
                rabbit_id=rabbit.id,
                subtotal=subtotal,
                tax=tax,
                tip=tip,
                total=subtotal + tax + tip,
            )
        )

    items_subtotal = sum(prices.values())
    tax_amount = round_half_away(items_subtotal * tax_rate)
    tip_amount = round_half_away(items_subtotal * tip_rate)

    return SplitSummary(
        rabbit_totals=tuple(rabbit_totals),
        items_subtotal=items_subtotal,
        tax_amount=tax_amount,
        tip_amount=tip_amount,
        grand_total=items_subtotal + tax_amount + tip_amount,
        unassigned_item_count=sum(1 for item in items if counts.get(item.id, 0) == 0),
    )
