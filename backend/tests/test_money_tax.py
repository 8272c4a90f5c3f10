"""Currency rounding, tax components and document numbering."""

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from restopos.core.money import apply_rounding, money_sum, percent_of, to_money
from restopos.models import MenuItem, Table, TaxCode, TaxComponent
from restopos.services.numbering import (
    financial_year_code,
    next_invoice_number,
    next_kot_number,
    next_order_number,
    next_payment_number,
)
from restopos.services.tax_service import (
    TaxLine,
    calculate_line_tax,
    merge_breakdowns,
    resolve_components,
    scale_breakdown,
    split_interstate,
)

GST5 = [TaxLine(TaxCode.CGST, Decimal("2.5")), TaxLine(TaxCode.SGST, Decimal("2.5"))]


class TestMoney:

    def test_half_up(self):
        assert to_money("2.345") == Decimal("2.35")
        assert to_money(Decimal("2.344")) == Decimal("2.34")
        assert to_money(None) == Decimal("0.00")

    def test_sum_and_percent(self):
        assert money_sum(["10.005", 5, Decimal("0.1")]) == Decimal("15.11")
        assert percent_of(Decimal("1700"), Decimal("10")) == Decimal("170.00")

    @pytest.mark.parametrize("policy, unit, expected", [
        ("nearest", "1", "1607.00"),
        ("up", "1", "1607.00"),
        ("down", "1", "1606.00"),
        ("none", "1", "1606.50"),
        ("nearest", "5", "1605.00"),
        ("up", "5", "1610.00"),
    ])
    def test_rounding_policies(self, policy, unit, expected):
        assert apply_rounding(Decimal("1606.50"), policy, Decimal(unit)) == Decimal(expected)


class TestTax:

    def test_line_tax_per_component(self):
        breakdown = calculate_line_tax(Decimal("700"), GST5)
        assert breakdown.amount_for(TaxCode.CGST) == Decimal("17.50")
        assert breakdown.amount_for(TaxCode.SGST) == Decimal("17.50")
        assert breakdown.total == Decimal("35.00")

    def test_untaxed_item(self):
        assert calculate_line_tax(Decimal("500"), []).total == Decimal("0.00")

    def test_merge_and_scale(self):
        merged = merge_breakdowns([
            calculate_line_tax(Decimal("700"), GST5),
            calculate_line_tax(Decimal("1000"), GST5),
        ])
        assert merged.total == Decimal("85.00")
        scaled = scale_breakdown(merged, Decimal("0.9"))
        assert scaled.amount_for(TaxCode.CGST) == Decimal("38.25")
        assert scaled.total == Decimal("76.50")

    def test_interstate_collapses_to_igst(self):
        breakdown = split_interstate(calculate_line_tax(Decimal("1000"), GST5))
        assert breakdown.amount_for(TaxCode.CGST) == Decimal("0")
        assert breakdown.amount_for(TaxCode.SGST) == Decimal("0")
        assert breakdown.amount_for(TaxCode.IGST) == Decimal("50.00")

    def test_resolve_components_skips_inactive_groups(self):
        component = SimpleNamespace(code="VAT", rate=Decimal("10"))
        active = SimpleNamespace(is_active=True, components=[component])
        inactive = SimpleNamespace(is_active=False, components=[component])

        assert resolve_components(active) == [TaxLine(TaxCode.VAT, Decimal("10"))]
        assert resolve_components(inactive) == []
        assert resolve_components(None) == []


class TestNumbering:

    @pytest.mark.parametrize("day, expected", [
        (date(2026, 4, 1), "2627"),
        (date(2027, 3, 31), "2627"),
        (date(2026, 3, 31), "2526"),
        (date(2099, 12, 1), "9900"),
    ])
    def test_financial_year(self, day, expected):
        assert financial_year_code(day) == expected

    def test_formats_and_sequences(self, db_session):
        now = datetime(2026, 4, 15, 12, 30)
        assert next_order_number(db_session, 1, now) == "ORD2604150001"
        assert next_order_number(db_session, 1, now) == "ORD2604150002"
        assert next_order_number(db_session, 2, now) == "ORD2604150001"
        assert next_kot_number(db_session, "KOT", now) == "KOT0415001"
        assert next_kot_number(db_session, "BOT", now) == "BOT0415001"
        assert next_kot_number(db_session, "KOT", now) == "KOT0415002"
        assert next_invoice_number(db_session, 1, now) == "INV/2627/000001"
        assert next_payment_number(db_session, 1, now) == "PAY2604150001"

    def test_sequences_restart_each_business_day(self, db_session):
        assert next_order_number(db_session, 1, datetime(2026, 4, 15)) == "ORD2604150001"
        assert next_order_number(db_session, 1, datetime(2026, 4, 16)) == "ORD2604160001"

    def test_invoice_sequence_spans_the_financial_year(self, db_session):
        assert next_invoice_number(db_session, 1, datetime(2026, 4, 15)) == "INV/2627/000001"
        assert next_invoice_number(db_session, 1, datetime(2027, 2, 1)) == "INV/2627/000002"
        assert next_invoice_number(db_session, 1, datetime(2027, 4, 1)) == "INV/2728/000001"


class TestColumnGuards:

    def test_table_capacity_must_be_positive(self):
        with pytest.raises(ValueError, match="capacity must be positive"):
            Table(table_number="T9", capacity=0)

    def test_negative_price(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            MenuItem(name="Lassi", base_price=Decimal("-1"))

    def test_rate_out_of_range(self):
        with pytest.raises(ValueError, match="between 0 and 100"):
            TaxComponent(code=TaxCode.CGST, rate=Decimal("120"))

    def test_non_numeric(self):
        with pytest.raises(ValueError, match="must be numeric"):
            MenuItem(name="Lassi", base_price="free")
