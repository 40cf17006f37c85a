"""Tests for payload parsing and value objects in stock_kernel.domain.dtos."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.domain.dtos import (
    DiscountType,
    InvoiceNumber,
    LedgerRole,
    PaymentMode,
    SaleDraft,
    SaleLineDraft,
    SaleResult,
    SaleStatus,
    SaleType,
    SaleUpdate,
    StockLevel,
    TenancyScope,
)
from stock_kernel.exceptions import StockValidationError


def _payload(**overrides):
    product_id = uuid4()
    stock_id = uuid4()
    payload = {
        "date": "2025-01-15",
        "customer_id": str(uuid4()),
        "payment_mode": "upi",
        "paid_amount": "100.00",
        "items": [
            {
                "product_id": str(product_id),
                "stock_id": str(stock_id),
                "qty": 2,
                "loose_qty": "3",
                "price": "25.00",
                "mrp": 30,
            }
        ],
    }
    payload.update(overrides)
    return payload


class TestTenancyScope:

    def test_branch_role_requires_branch_id(self):
        with pytest.raises(StockValidationError) as exc_info:
            TenancyScope(uuid4(), uuid4(), LedgerRole.BRANCH, uuid4())
        assert exc_info.value.field == "branch_id"

    def test_organisation_role_without_branch(self):
        scope = TenancyScope(uuid4(), uuid4(), LedgerRole.ORGANISATION, uuid4())
        assert scope.branch_id is None


class TestSaleDraftFromPayload:

    def test_parses_json_shape(self):
        draft = SaleDraft.from_payload(_payload())

        assert draft.date == date(2025, 1, 15)
        assert draft.payment_mode == PaymentMode.UPI
        assert draft.sale_type == SaleType.RETAIL
        assert draft.discount_type == DiscountType.PERCENTAGE
        assert draft.paid_amount == Decimal("100.00")
        assert draft.invoice_no is None
        assert draft.is_paid is None

        line = draft.items[0]
        assert line.qty == 2
        assert line.loose_qty == 3
        assert line.price == Decimal("25.00")
        assert line.mrp == Decimal("30")
        assert line.amount is None
        assert line.branch_stock_id is None
        assert line.batch_id_for(LedgerRole.ORGANISATION) == line.stock_id

    def test_datetime_string_is_truncated_to_date(self):
        draft = SaleDraft.from_payload(_payload(date="2025-01-15T18:30:00Z"))
        assert draft.date == date(2025, 1, 15)

    def test_explicit_invoice_no_kept(self):
        draft = SaleDraft.from_payload(_payload(invoice_no="INV-20250115-00009"))
        assert draft.invoice_no == "INV-20250115-00009"

    def test_blank_invoice_no_means_allocate(self):
        draft = SaleDraft.from_payload(_payload(invoice_no=""))
        assert draft.invoice_no is None

    def test_missing_customer_rejected(self):
        payload = _payload()
        del payload["customer_id"]
        with pytest.raises(StockValidationError) as exc_info:
            SaleDraft.from_payload(payload)
        assert exc_info.value.field == "customer_id"

    def test_unknown_payment_mode_rejected(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleDraft.from_payload(_payload(payment_mode="cheque"))
        assert "cash" in str(exc_info.value)

    def test_non_numeric_amount_rejected(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleDraft.from_payload(_payload(paid_amount="lots"))
        assert exc_info.value.field == "paid_amount"

    def test_items_must_be_a_list(self):
        with pytest.raises(StockValidationError):
            SaleDraft.from_payload(_payload(items={"qty": 1}))

    def test_bad_date_rejected(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleDraft.from_payload(_payload(date="15/01/2025"))
        assert exc_info.value.field == "date"

    def test_numeric_invoice_no_coerced_to_string(self):
        draft = SaleDraft.from_payload(_payload(invoice_no=12345))
        assert draft.invoice_no == "12345"

    def test_non_string_invoice_no_rejected(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleDraft.from_payload(_payload(invoice_no=["INV-1"]))
        assert exc_info.value.field == "invoice_no"

    def test_payload_must_be_an_object(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleDraft.from_payload(["not", "a", "sale"])
        assert exc_info.value.field == "payload"

    def test_item_entries_must_be_objects(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleDraft.from_payload(_payload(items=["oops"]))
        assert exc_info.value.field == "items[0]"

    @pytest.mark.parametrize(
        "raw, expected",
        [("false", False), ("true", True), ("FALSE", False), (0, False), (1, True), (None, None)],
    )
    def test_is_paid_parsed_from_wire_values(self, raw, expected):
        draft = SaleDraft.from_payload(_payload(is_paid=raw))
        assert draft.is_paid is expected

    def test_unrecognised_flag_rejected(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleDraft.from_payload(_payload(is_paid="maybe"))
        assert exc_info.value.field == "is_paid"

    def test_gst_flag_string_false_is_false(self):
        draft = SaleDraft.from_payload(_payload(is_gst_included="false"))
        assert draft.is_gst_included is False


class TestSaleLineDraftFromPayload:

    def test_fractional_qty_rejected(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleLineDraft.from_payload(
                {"product_id": str(uuid4()), "stock_id": str(uuid4()), "qty": 1.5}
            )
        assert exc_info.value.field == "qty"

    def test_line_id_read_from_underscore_id(self):
        line_id = uuid4()
        line = SaleLineDraft.from_payload(
            {"_id": str(line_id), "product_id": str(uuid4()), "branch_stock_id": str(uuid4())}
        )
        assert line.id == line_id
        assert line.batch_id_for(LedgerRole.BRANCH) == line.branch_stock_id

    def test_missing_quantities_default_to_zero(self):
        line = SaleLineDraft.from_payload({"product_id": str(uuid4())})
        assert (line.qty, line.loose_qty) == (0, 0)

    def test_bad_uuid_rejected(self):
        with pytest.raises(StockValidationError) as exc_info:
            SaleLineDraft.from_payload({"product_id": "not-a-uuid"})
        assert exc_info.value.field == "product_id"


class TestValueObjects:

    def test_invoice_number_format(self):
        number = InvoiceNumber(prefix="INV-20250115", number=1, scope_key="k")
        assert number.value == "INV-20250115-00001"
        assert str(number) == "INV-20250115-00001"

    def test_invoice_number_width(self):
        number = InvoiceNumber(prefix="B", number=42, scope_key="k", width=3)
        assert number.value == "B-042"

    def test_sale_update_header_changes_skip_none(self):
        update = SaleUpdate(paid_amount=Decimal("5"), payment_mode=PaymentMode.CARD)
        assert update.header_changes() == {
            "payment_mode": PaymentMode.CARD,
            "paid_amount": Decimal("5"),
        }

    def test_sale_result_to_dict(self):
        sale_id = uuid4()
        result = SaleResult(SaleStatus.COMMITTED, sale_id, "INV-1", 2, units_deducted=13)
        assert result.is_success
        assert result.to_dict() == {
            "status": "committed",
            "sale_id": str(sale_id),
            "invoice_no": "INV-1",
            "line_count": 2,
            "units_deducted": 13,
            "units_reverted": 0,
        }

    def test_stock_level_total_units(self):
        level = StockLevel(
            batch_id=uuid4(),
            role=LedgerRole.ORGANISATION,
            product_id=uuid4(),
            batch_no="B",
            expiry_date=date(2026, 1, 1),
            pack_size=10,
            available_quantity=4,
            available_loose_quantity=0,
        )
        assert level.total_units == 40
