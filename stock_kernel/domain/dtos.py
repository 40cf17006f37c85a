"""
Domain DTOs for the stock kernel.

Frozen value objects passed between callers, services and selectors.  They
carry no database identity and no I/O.  ``SaleDraft.from_payload`` parses
the JSON shape accepted by the sale endpoint::

    {invoice_no?, date, customer_id, payment_mode, paid_amount,
     items: [{product_id, stock_id | branch_stock_id, qty, loose_qty,
              price, mrp}]}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from stock_kernel.exceptions import StockValidationError


class LedgerRole(str, Enum):
    """Which stock ledger a caller operates on, resolved by auth middleware."""

    ORGANISATION = "organisation"  # stock_audits
    BRANCH = "branch"  # branch_stock


class PaymentMode(str, Enum):
    CASH = "cash"
    UPI = "upi"
    CARD = "card"


class SaleType(str, Enum):
    RETAIL = "retail"
    WHOLESALE = "wholesale"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class SaleStatus(str, Enum):
    COMMITTED = "committed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class TenancyScope:
    """
    Resolved tenancy of the caller.

    Every ledger row is partitioned by the tenant/organisation/branch
    triple.  ``role`` selects the stock ledger; ``actor_id`` is stamped on
    created rows.
    """

    tenant_id: UUID
    organisation_id: UUID
    role: LedgerRole
    actor_id: UUID
    branch_id: UUID | None = None

    def __post_init__(self):
        if self.role == LedgerRole.BRANCH and self.branch_id is None:
            raise StockValidationError(
                "branch-level scope requires branch_id", field="branch_id"
            )


def _to_decimal(value: Any, field_name: str, default: Decimal | None = None) -> Decimal | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise StockValidationError(f"{field_name} must be numeric", field=field_name)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise StockValidationError(
            f"{field_name} must be numeric, got {value!r}", field=field_name
        ) from None


def _to_uuid(value: Any, field_name: str, required: bool = True) -> UUID | None:
    if value is None or value == "":
        if required:
            raise StockValidationError(f"{field_name} is required", field=field_name)
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise StockValidationError(
            f"{field_name} must be a UUID, got {value!r}", field=field_name
        ) from None


def _to_int(value: Any, field_name: str) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise StockValidationError(f"{field_name} must be an integer", field=field_name)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise StockValidationError(
        f"{field_name} must be an integer, got {value!r}", field=field_name
    )


_TRUE_STRINGS = frozenset({"true", "1"})
_FALSE_STRINGS = frozenset({"false", "0"})


def _to_bool(value: Any, field_name: str, default: bool | None = None) -> bool | None:
    """Accept bools, 0/1 and "true"/"false"; ``None`` or "" gives ``default``."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise StockValidationError(
        f"{field_name} must be a boolean, got {value!r}", field=field_name
    )


def _to_optional_str(value: Any, field_name: str) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise StockValidationError(f"{field_name} must be a string", field=field_name)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    raise StockValidationError(
        f"{field_name} must be a string, got {type(value).__name__}", field=field_name
    )


def _require_mapping(value: Any, field_name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise StockValidationError(
            f"{field_name} must be an object, got {type(value).__name__}", field=field_name
        )
    return value


def _to_enum(enum_cls, value: Any, field_name: str, default):
    if value is None or value == "":
        return default
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise StockValidationError(
            f"{field_name} must be one of {allowed}, got {value!r}", field=field_name
        ) from None


def _to_date(value: Any, field_name: str) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise StockValidationError(f"{field_name} must be an ISO date", field=field_name)


@dataclass(frozen=True)
class SaleLineDraft:
    """One requested line: ``qty`` packs plus ``loose_qty`` loose units."""

    product_id: UUID
    price: Decimal
    qty: int = 0
    loose_qty: int = 0
    stock_id: UUID | None = None
    branch_stock_id: UUID | None = None
    mrp: Decimal = Decimal("0")
    amount: Decimal | None = None
    tax_percentage: Decimal = Decimal("0")
    id: UUID | None = None  # set only when editing an existing line

    def batch_id_for(self, role: LedgerRole) -> UUID | None:
        return self.stock_id if role == LedgerRole.ORGANISATION else self.branch_stock_id

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> SaleLineDraft:
        data = _require_mapping(data, "item")
        return cls(
            id=_to_uuid(data.get("_id") or data.get("id"), "id", required=False),
            product_id=_to_uuid(data.get("product_id"), "product_id"),
            stock_id=_to_uuid(data.get("stock_id"), "stock_id", required=False),
            branch_stock_id=_to_uuid(
                data.get("branch_stock_id"), "branch_stock_id", required=False
            ),
            qty=_to_int(data.get("qty"), "qty"),
            loose_qty=_to_int(data.get("loose_qty"), "loose_qty"),
            price=_to_decimal(data.get("price"), "price", Decimal("0")),
            mrp=_to_decimal(data.get("mrp"), "mrp", Decimal("0")),
            amount=_to_decimal(data.get("amount"), "amount"),
            tax_percentage=_to_decimal(
                data.get("tax_percentage"), "tax_percentage", Decimal("0")
            ),
        )


@dataclass(frozen=True)
class SaleDraft:
    """A sale submitted for creation.  Totals are computed by the caller."""

    date: date
    customer_id: UUID
    items: tuple[SaleLineDraft, ...]
    invoice_no: str | None = None
    payment_mode: PaymentMode = PaymentMode.CASH
    sale_type: SaleType = SaleType.RETAIL
    paid_amount: Decimal = Decimal("0")
    sub_total: Decimal | None = None
    total_amount: Decimal | None = None
    value_of_goods: Decimal = Decimal("0")
    total_gst: Decimal = Decimal("0")
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount: Decimal = Decimal("0")
    is_gst_included: bool = False
    is_paid: bool | None = None
    is_partially_paid: bool | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> SaleDraft:
        data = _require_mapping(data, "payload")
        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise StockValidationError("items must be a list", field="items")
        for index, item in enumerate(raw_items):
            _require_mapping(item, f"items[{index}]")
        return cls(
            invoice_no=_to_optional_str(data.get("invoice_no"), "invoice_no"),
            date=_to_date(data.get("date"), "date"),
            customer_id=_to_uuid(data.get("customer_id"), "customer_id"),
            payment_mode=_to_enum(
                PaymentMode, data.get("payment_mode"), "payment_mode", PaymentMode.CASH
            ),
            sale_type=_to_enum(SaleType, data.get("sale_type"), "sale_type", SaleType.RETAIL),
            paid_amount=_to_decimal(data.get("paid_amount"), "paid_amount", Decimal("0")),
            sub_total=_to_decimal(data.get("sub_total"), "sub_total"),
            total_amount=_to_decimal(data.get("total_amount"), "total_amount"),
            value_of_goods=_to_decimal(
                data.get("value_of_goods"), "value_of_goods", Decimal("0")
            ),
            total_gst=_to_decimal(data.get("total_gst"), "total_gst", Decimal("0")),
            discount_type=_to_enum(
                DiscountType,
                data.get("discount_type"),
                "discount_type",
                DiscountType.PERCENTAGE,
            ),
            discount=_to_decimal(data.get("discount"), "discount", Decimal("0")),
            is_gst_included=_to_bool(data.get("is_gst_included"), "is_gst_included", False),
            is_paid=_to_bool(data.get("is_paid"), "is_paid"),
            is_partially_paid=_to_bool(data.get("is_partially_paid"), "is_partially_paid"),
            items=tuple(SaleLineDraft.from_payload(item) for item in raw_items),
        )


@dataclass(frozen=True)
class SaleUpdate:
    """
    Edit of an existing sale.  ``None`` header fields are left unchanged.

    ``items=None`` leaves the line set untouched; otherwise it is the full
    new line set: lines with ``id`` are updated, lines without are
    inserted, and existing lines missing from it are deleted.
    """

    invoice_no: str | None = None
    date: date | None = None
    customer_id: UUID | None = None
    payment_mode: PaymentMode | None = None
    sale_type: SaleType | None = None
    paid_amount: Decimal | None = None
    sub_total: Decimal | None = None
    total_amount: Decimal | None = None
    value_of_goods: Decimal | None = None
    total_gst: Decimal | None = None
    discount_type: DiscountType | None = None
    discount: Decimal | None = None
    is_gst_included: bool | None = None
    is_paid: bool | None = None
    is_partially_paid: bool | None = None
    items: tuple[SaleLineDraft, ...] | None = None

    HEADER_FIELDS = (
        "invoice_no",
        "date",
        "customer_id",
        "payment_mode",
        "sale_type",
        "paid_amount",
        "sub_total",
        "total_amount",
        "value_of_goods",
        "total_gst",
        "discount_type",
        "discount",
        "is_gst_included",
        "is_paid",
        "is_partially_paid",
    )

    def header_changes(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.HEADER_FIELDS
            if getattr(self, name) is not None
        }


@dataclass(frozen=True)
class InvoiceNumber:
    """An issued invoice number: ``PREFIX-NNNNN``."""

    prefix: str
    number: int
    scope_key: str
    width: int = 5

    @property
    def value(self) -> str:
        return f"{self.prefix}-{self.number:0{self.width}d}"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SaleResult:
    """Outcome of a committed sale operation."""

    status: SaleStatus
    sale_id: UUID
    invoice_no: str
    line_count: int
    units_deducted: int = 0
    units_reverted: int = 0

    @property
    def is_success(self) -> bool:
        return self.status == SaleStatus.COMMITTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "sale_id": str(self.sale_id),
            "invoice_no": self.invoice_no,
            "line_count": self.line_count,
            "units_deducted": self.units_deducted,
            "units_reverted": self.units_reverted,
        }


@dataclass(frozen=True)
class StockLevel:
    batch_id: UUID
    role: LedgerRole
    product_id: UUID
    batch_no: str | None
    expiry_date: date
    pack_size: int
    available_quantity: int
    available_loose_quantity: int

    @property
    def total_units(self) -> int:
        return self.available_quantity * self.pack_size + self.available_loose_quantity


@dataclass(frozen=True)
class SaleItemView:
    id: UUID
    product_id: UUID
    stock_id: UUID | None
    branch_stock_id: UUID | None
    qty: int
    loose_qty: int
    price: Decimal
    mrp: Decimal
    amount: Decimal
    tax_percentage: Decimal


@dataclass(frozen=True)
class PaymentView:
    id: UUID
    amount_paid: Decimal
    payment_mode: str
    note: str | None


@dataclass(frozen=True)
class SaleView:
    id: UUID
    invoice_no: str
    date: date
    customer_id: UUID
    total_amount: Decimal
    paid_amount: Decimal
    is_paid: bool
    is_partially_paid: bool
    items: tuple[SaleItemView, ...] = field(default_factory=tuple)
    payments: tuple[PaymentView, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StockOutRequest:
    """Remove stock from a batch outside a sale (damage, expiry, return)."""

    batch_id: UUID
    out_reason: str
    out_date: date
    qty: int = 0
    loose_qty: int = 0
    note: str | None = None


@dataclass(frozen=True)
class BranchAllocationRequest:
    """Move whole packs from an organisation batch into a branch batch."""

    stock_audit_id: UUID
    branch_id: UUID
    quantity: int
    sell_price: Decimal | None = None
    note: str | None = None


@dataclass(frozen=True)
class StockMovementResult:
    """Outcome of a stock-out, branch allocation or allocation revert."""

    operation: str
    batch_id: UUID
    packs: int
    loose: int
    units: int
    record_id: UUID | None = None  # StockOut row or new BranchStock row
    target_batch_id: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "batch_id": str(self.batch_id),
            "packs": self.packs,
            "loose": self.loose,
            "units": self.units,
            "record_id": str(self.record_id) if self.record_id else None,
            "target_batch_id": str(self.target_batch_id) if self.target_batch_id else None,
        }
