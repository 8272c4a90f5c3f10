"""Tax component resolution for menu items.

Pure lookups and arithmetic; nothing here writes to the database.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from restopos.core.money import ZERO, percent_of, to_money
from restopos.models.menu import TaxCode, TaxGroup


@dataclass(frozen=True)
class TaxLine:
    """One component rate of a tax group."""

    code: TaxCode
    rate: Decimal


@dataclass(frozen=True)
class TaxBreakdown:
    """Tax amounts per component code for one taxable amount."""

    amounts: Dict[TaxCode, Decimal]

    @property
    def total(self) -> Decimal:
        return to_money(sum(self.amounts.values(), ZERO))

    def amount_for(self, code: TaxCode) -> Decimal:
        return self.amounts.get(code, ZERO)


def resolve_components(tax_group: Optional[TaxGroup]) -> List[TaxLine]:
    """Component rates configured on a tax group; an empty list means untaxed."""
    if tax_group is None or not tax_group.is_active:
        return []
    return [TaxLine(code=TaxCode(c.code), rate=Decimal(str(c.rate))) for c in tax_group.components]


def calculate_line_tax(amount: Decimal, components: Iterable[TaxLine]) -> TaxBreakdown:
    """Tax on an exclusive amount, each component rounded half-up to cents."""
    amounts: Dict[TaxCode, Decimal] = {}
    for line in components:
        amounts[line.code] = to_money(amounts.get(line.code, ZERO) + percent_of(amount, line.rate))
    return TaxBreakdown(amounts=amounts)


def merge_breakdowns(breakdowns: Iterable[TaxBreakdown]) -> TaxBreakdown:
    merged: Dict[TaxCode, Decimal] = {}
    for breakdown in breakdowns:
        for code, amount in breakdown.amounts.items():
            merged[code] = to_money(merged.get(code, ZERO) + amount)
    return TaxBreakdown(amounts=merged)


def scale_breakdown(breakdown: TaxBreakdown, ratio: Decimal) -> TaxBreakdown:
    """Scale every component, used when a pre-tax discount shrinks the taxable base."""
    return TaxBreakdown(
        amounts={code: to_money(amount * ratio) for code, amount in breakdown.amounts.items()}
    )


def split_interstate(breakdown: TaxBreakdown) -> TaxBreakdown:
    """Interstate supply: CGST and SGST are charged together as IGST."""
    amounts = dict(breakdown.amounts)
    central = amounts.pop(TaxCode.CGST, ZERO)
    state = amounts.pop(TaxCode.SGST, ZERO)
    if central or state:
        amounts[TaxCode.IGST] = to_money(amounts.get(TaxCode.IGST, ZERO) + central + state)
    return TaxBreakdown(amounts=amounts)
