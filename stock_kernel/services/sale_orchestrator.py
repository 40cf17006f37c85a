"""
SaleTransactionOrchestrator -- failure-atomic sale creation, edit and void.

Responsibility:
    Runs one sale as one unit of work: invoice number, sale header, line
    items, payment and stock deduction either all commit or none do.  Also
    owns the edit and void paths and the invoice-number endpoints.

Architecture position:
    Kernel > Services -- top of the kernel write side.  Composes
    InvoiceSequenceAllocator and the StockLedger selected by the caller's
    LedgerRole.  Owns the commit/rollback (``auto_commit=True``).

Invariants enforced:
    - Atomicity: if line k of n fails, lines 1..k-1 are rolled back along
      with the header, items, payment and invoice counter increment.
    - Lock order: every distinct batch a sale touches is locked in
      ascending id order before the first write; lines are then deducted
      in request order.
    - Invoice uniqueness per invoice scope: explicit duplicate check, with
      UNIQUE(invoice_scope_key, invoice_no) as the backstop.
    - Nothing is retried here.  ConcurrencyError subclasses are retryable
      by the caller.

Failure modes:
    - StockValidationError: malformed draft (before any lock is taken).
    - DuplicateInvoiceError: invoice number already used in the scope.
    - StockError subclasses from the ledger.
    - LockTimeoutError: lock wait timeout or deadlock (PostgreSQL).
    - InternalError: any other database error.

Sale edit stock policy:
    ``METADATA_ONLY`` (default) rewrites header and lines but leaves the
    ledger alone.  ``RECONCILE`` reverts every live line's quantities, then
    deducts the new line set, in the same transaction.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    InvoiceNumber,
    LedgerRole,
    SaleDraft,
    SaleLineDraft,
    SaleResult,
    SaleStatus,
    SaleUpdate,
    TenancyScope,
)
from stock_kernel.domain.pack_math import require_non_negative_int
from stock_kernel.domain.policy import SaleEditStockPolicy, SalePolicy
from stock_kernel.envelope import (
    ResponseEnvelope,
    envelope_from_error,
    envelope_from_result,
)
from stock_kernel.exceptions import (
    DuplicateInvoiceError,
    SaleNotFoundError,
    StockKernelError,
    StockValidationError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.sales import PaymentHistory, SalesRecord, SalesRecordItem
from stock_kernel.services.invoice_sequence import InvoiceSequenceAllocator
from stock_kernel.services.stock_ledger import LockedBatch, StockLedger, ledger_for
from stock_kernel.services.unit_of_work import run_unit_of_work

logger = get_logger("services.sale_orchestrator")

T = TypeVar("T")

AUTO_PAYMENT_NOTE = "Auto entry from bill creation"
INVOICE_NO_MAX_LENGTH = 50
CENT = Decimal("0.01")

_INVOICE_CONSTRAINT_MARKERS = (
    "uq_sales_record_invoice",
    "sales_records.invoice_scope_key",
)


def _line_amount(line: SaleLineDraft, pack_size: int) -> Decimal:
    """Caller-supplied amount, else price per pack pro rata over loose units."""
    if line.amount is not None:
        return line.amount
    loose_value = line.price * line.loose_qty / pack_size
    return (line.price * line.qty + loose_value).quantize(CENT, rounding=ROUND_HALF_UP)


def _is_invoice_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _INVOICE_CONSTRAINT_MARKERS)


class SaleTransactionOrchestrator:
    """
    Runs sales through the stock ledger as single transactions.

    Contract:
        ``create_sale``, ``update_sale``, ``void_sale`` and
        ``preallocate_invoice_number`` each commit on success and roll back
        on failure (when ``auto_commit=True``), then re-raise the typed
        error.  ``submit_sale`` wraps ``create_sale`` for the API boundary
        and always returns a ResponseEnvelope.

    Non-goals:
        - Does NOT retry on ConcurrencyError -- the caller re-submits.
        - Does NOT compute tax or discounts; totals come from the caller.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SalePolicy | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or SalePolicy()
        self._auto_commit = auto_commit
        self._allocator = InvoiceSequenceAllocator(session, self._clock, self._policy)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def policy(self) -> SalePolicy:
        return self._policy

    def _ledger(self, role: LedgerRole) -> StockLedger:
        return ledger_for(role, self._session, self._policy.default_pack_size)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        scope: TenancyScope,
        work: Callable[[], T],
        **log_extra,
    ) -> T:
        return run_unit_of_work(
            self._session,
            operation,
            scope,
            work,
            auto_commit=self._auto_commit,
            lock_timeout_ms=self._policy.lock_timeout_ms,
            **log_extra,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_lines(
        self, items: tuple[SaleLineDraft, ...], role: LedgerRole
    ) -> None:
        if not items and not self._policy.allow_empty_sales:
            raise StockValidationError("sale must contain at least one item", field="items")
        for index, line in enumerate(items):
            prefix = f"items[{index}]"
            qty = require_non_negative_int(line.qty, f"{prefix}.qty")
            loose_qty = require_non_negative_int(line.loose_qty, f"{prefix}.loose_qty")
            if qty == 0 and loose_qty == 0:
                raise StockValidationError(
                    f"{prefix} must sell at least one unit", field=f"{prefix}.qty"
                )
            if line.batch_id_for(role) is None:
                ref = "stock_id" if role == LedgerRole.ORGANISATION else "branch_stock_id"
                raise StockValidationError(f"{prefix}.{ref} is required", field=f"{prefix}.{ref}")
            for name in ("price", "mrp", "amount", "tax_percentage"):
                value = getattr(line, name)
                if value is not None and value < 0:
                    raise StockValidationError(
                        f"{prefix}.{name} must not be negative", field=f"{prefix}.{name}"
                    )

    @staticmethod
    def _validate_money(values: dict[str, Decimal | None]) -> None:
        for name, value in values.items():
            if value is not None and value < 0:
                raise StockValidationError(f"{name} must not be negative", field=name)

    @staticmethod
    def _validate_invoice_no(invoice_no: str) -> str:
        if not isinstance(invoice_no, str):
            raise StockValidationError("invoice_no must be a string", field="invoice_no")
        cleaned = invoice_no.strip()
        if not cleaned:
            raise StockValidationError("invoice_no must not be blank", field="invoice_no")
        if len(cleaned) > INVOICE_NO_MAX_LENGTH:
            raise StockValidationError(
                f"invoice_no longer than {INVOICE_NO_MAX_LENGTH} characters",
                field="invoice_no",
            )
        return cleaned

    def _check_product(self, line: SaleLineDraft, locked: LockedBatch, index: int) -> None:
        if line.product_id != locked.product_id:
            raise StockValidationError(
                f"items[{index}].product_id does not match batch {locked.batch_id}",
                field=f"items[{index}].product_id",
            )

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _sale_scope_criteria(self, scope: TenancyScope) -> list:
        branch_clause = (
            SalesRecord.branch_id.is_(None)
            if scope.branch_id is None
            else SalesRecord.branch_id == scope.branch_id
        )
        return [
            SalesRecord.tenant_id == scope.tenant_id,
            SalesRecord.organisation_id == scope.organisation_id,
            branch_clause,
        ]

    def _lock_sale(self, sale_id: UUID, scope: TenancyScope) -> SalesRecord:
        sale = self._session.execute(
            select(SalesRecord)
            .where(
                SalesRecord.id == sale_id,
                SalesRecord.deleted_at.is_(None),
                *self._sale_scope_criteria(scope),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if sale is None:
            raise SaleNotFoundError(str(sale_id))
        return sale

    def _invoice_taken(
        self, invoice_no: str, key: str, exclude_sale_id: UUID | None = None
    ) -> bool:
        stmt = select(SalesRecord.id).where(
            SalesRecord.invoice_scope_key == key,
            SalesRecord.invoice_no == invoice_no,
        )
        if exclude_sale_id is not None:
            stmt = stmt.where(SalesRecord.id != exclude_sale_id)
        return self._session.execute(stmt.limit(1)).first() is not None

    def _ensure_invoice_unused(
        self, invoice_no: str, key: str, exclude_sale_id: UUID | None = None
    ) -> None:
        if self._invoice_taken(invoice_no, key, exclude_sale_id):
            raise DuplicateInvoiceError(invoice_no, key)

    def _allocate_unused_invoice_no(self, scope: TenancyScope, key: str) -> str:
        """Next counter value not already claimed by an explicit invoice_no."""
        number = self._allocator.next_invoice_number(scope)
        while self._invoice_taken(number.value, key):
            logger.warning(
                "invoice_number_skipped",
                extra={"invoice_no": number.value, "scope_key": key},
            )
            number = self._allocator.next_invoice_number(scope)
        return number.value

    def _flush_header(self, sale: SalesRecord) -> None:
        try:
            self._session.flush()
        except IntegrityError as exc:
            if _is_invoice_conflict(exc):
                raise DuplicateInvoiceError(sale.invoice_no, sale.invoice_scope_key) from exc
            raise

    @staticmethod
    def _payment_flags(
        paid_amount: Decimal,
        total_amount: Decimal,
        is_paid: bool | None,
        is_partially_paid: bool | None,
    ) -> tuple[bool, bool]:
        if is_paid is None:
            is_paid = paid_amount >= total_amount
        if is_partially_paid is None:
            is_partially_paid = Decimal("0") < paid_amount < total_amount
        return bool(is_paid), bool(is_partially_paid)

    def _add_items(
        self,
        sale: SalesRecord,
        items: tuple[SaleLineDraft, ...],
        locked: dict[UUID, LockedBatch],
        scope: TenancyScope,
        start_line_no: int = 0,
    ) -> list[SalesRecordItem]:
        rows = []
        for offset, line in enumerate(items):
            batch_id = line.batch_id_for(scope.role)
            batch = locked[batch_id]
            self._check_product(line, batch, start_line_no + offset)
            rows.append(
                SalesRecordItem(
                    sales_record_id=sale.id,
                    line_no=start_line_no + offset,
                    product_id=line.product_id,
                    stock_id=batch_id if scope.role == LedgerRole.ORGANISATION else None,
                    branch_stock_id=batch_id if scope.role == LedgerRole.BRANCH else None,
                    qty=line.qty,
                    loose_qty=line.loose_qty,
                    price=line.price,
                    mrp=line.mrp,
                    amount=_line_amount(line, batch.pack_size),
                    tax_percentage=line.tax_percentage,
                    tenant_id=scope.tenant_id,
                    organisation_id=scope.organisation_id,
                    branch_id=scope.branch_id,
                    created_by_id=scope.actor_id,
                )
            )
        self._session.add_all(rows)
        return rows

    def _deduct_lines(
        self,
        ledger: StockLedger,
        lines: list[tuple[UUID, int, int]],
        scope: TenancyScope,
    ) -> int:
        units = 0
        for batch_id, qty, loose_qty in lines:
            plan = ledger.deduct(batch_id, qty, loose_qty, scope)
            units += plan.units_deducted
        return units

    def _revert_items(
        self,
        ledger: StockLedger,
        items: list[SalesRecordItem],
        locked: dict[UUID, LockedBatch],
        scope: TenancyScope,
    ) -> int:
        units = 0
        for item in items:
            batch_id = self._item_batch_id(item, scope.role)
            ledger.revert(batch_id, item.qty, item.loose_qty, scope)
            units += item.qty * locked[batch_id].pack_size + item.loose_qty
        return units

    @staticmethod
    def _item_batch_id(item: SalesRecordItem, role: LedgerRole) -> UUID:
        batch_id = item.stock_id if role == LedgerRole.ORGANISATION else item.branch_stock_id
        if batch_id is None:
            raise StockValidationError(
                f"sale item {item.id} was not sold from the {role.value} ledger",
                field="items",
            )
        return batch_id

    def _live_items(self, sale: SalesRecord) -> list[SalesRecordItem]:
        return list(
            self._session.execute(
                select(SalesRecordItem)
                .where(
                    SalesRecordItem.sales_record_id == sale.id,
                    SalesRecordItem.deleted_at.is_(None),
                )
                .order_by(SalesRecordItem.line_no)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_sale(self, draft: SaleDraft, scope: TenancyScope) -> SaleResult:
        """
        Create a sale and deduct its stock in one transaction.

        Postconditions:
            - On success the header, items, payment, counter increment and
              every deduction are committed together.
            - On failure nothing is persisted and no stock moved.
        """
        return self._run(
            "sale",
            scope,
            lambda: self._do_create_sale(draft, scope),
            line_count=len(draft.items),
            invoice_no=draft.invoice_no,
        )

    def _do_create_sale(self, draft: SaleDraft, scope: TenancyScope) -> SaleResult:
        self._validate_lines(draft.items, scope.role)
        self._validate_money(
            {
                "paid_amount": draft.paid_amount,
                "sub_total": draft.sub_total,
                "total_amount": draft.total_amount,
                "value_of_goods": draft.value_of_goods,
                "total_gst": draft.total_gst,
                "discount": draft.discount,
            }
        )

        key = self._allocator.scope_key(scope)
        if draft.invoice_no:
            invoice_no = self._validate_invoice_no(draft.invoice_no)
            self._ensure_invoice_unused(invoice_no, key)
        else:
            invoice_no = self._allocate_unused_invoice_no(scope, key)

        ledger = self._ledger(scope.role)
        locked = ledger.lock_all(
            (line.batch_id_for(scope.role) for line in draft.items), scope
        )

        with LogContext.bind(invoice_no=invoice_no):
            amounts = [
                _line_amount(line, locked[line.batch_id_for(scope.role)].pack_size)
                for line in draft.items
            ]
            sub_total = draft.sub_total if draft.sub_total is not None else sum(amounts, Decimal("0"))
            total_amount = draft.total_amount if draft.total_amount is not None else sub_total
            is_paid, is_partially_paid = self._payment_flags(
                draft.paid_amount, total_amount, draft.is_paid, draft.is_partially_paid
            )

            sale = SalesRecord(
                id=uuid4(),
                invoice_no=invoice_no,
                invoice_scope_key=key,
                date=draft.date,
                customer_id=draft.customer_id,
                sale_type=draft.sale_type.value,
                payment_mode=draft.payment_mode.value,
                paid_amount=draft.paid_amount,
                sub_total=sub_total,
                total_amount=total_amount,
                value_of_goods=draft.value_of_goods,
                total_gst=draft.total_gst,
                discount_type=draft.discount_type.value,
                discount=draft.discount,
                is_gst_included=draft.is_gst_included,
                is_paid=is_paid,
                is_partially_paid=is_partially_paid,
                tenant_id=scope.tenant_id,
                organisation_id=scope.organisation_id,
                branch_id=scope.branch_id,
                created_by_id=scope.actor_id,
            )
            self._session.add(sale)
            self._flush_header(sale)

            self._add_items(sale, draft.items, locked, scope)

            if draft.paid_amount > 0:
                self._session.add(
                    PaymentHistory(
                        sales_record_id=sale.id,
                        payment_date=self._clock.now(),
                        amount_paid=draft.paid_amount,
                        payment_mode=draft.payment_mode.value,
                        note=AUTO_PAYMENT_NOTE,
                        tenant_id=scope.tenant_id,
                        organisation_id=scope.organisation_id,
                        branch_id=scope.branch_id,
                        created_by_id=scope.actor_id,
                    )
                )
            self._session.flush()

            units = self._deduct_lines(
                ledger,
                [
                    (line.batch_id_for(scope.role), line.qty, line.loose_qty)
                    for line in draft.items
                ],
                scope,
            )

        return SaleResult(
            status=SaleStatus.COMMITTED,
            sale_id=sale.id,
            invoice_no=invoice_no,
            line_count=len(draft.items),
            units_deducted=units,
        )

    def submit_sale(self, payload: dict, scope: TenancyScope) -> ResponseEnvelope:
        """Parse a JSON payload, create the sale and wrap the outcome."""
        try:
            draft = SaleDraft.from_payload(payload)
            result = self.create_sale(draft, scope)
        except StockKernelError as exc:
            return envelope_from_error(exc)
        return envelope_from_result(result, message="Sale recorded")

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_sale(
        self, sale_id: UUID, update: SaleUpdate, scope: TenancyScope
    ) -> SaleResult:
        """
        Edit a sale's header and, optionally, its line set.

        Line diff: lines with ``id`` update the matching live item, lines
        without ``id`` are inserted, live items absent from the new set are
        soft-deleted.  Stock moves only under ``RECONCILE``.
        """
        return self._run(
            "sale_update",
            scope,
            lambda: self._do_update_sale(sale_id, update, scope),
            sale_id=str(sale_id),
            edit_stock_policy=self._policy.edit_stock_policy.value,
        )

    def _do_update_sale(
        self, sale_id: UUID, update: SaleUpdate, scope: TenancyScope
    ) -> SaleResult:
        sale = self._lock_sale(sale_id, scope)
        changes = update.header_changes()
        self._validate_money(
            {
                name: changes.get(name)
                for name in (
                    "paid_amount",
                    "sub_total",
                    "total_amount",
                    "value_of_goods",
                    "total_gst",
                    "discount",
                )
            }
        )
        if "invoice_no" in changes:
            changes["invoice_no"] = self._validate_invoice_no(changes["invoice_no"])
            if changes["invoice_no"] != sale.invoice_no:
                self._ensure_invoice_unused(
                    changes["invoice_no"], sale.invoice_scope_key, exclude_sale_id=sale.id
                )

        units_deducted = 0
        units_reverted = 0
        reconcile = (
            update.items is not None
            and self._policy.edit_stock_policy == SaleEditStockPolicy.RECONCILE
        )

        with LogContext.bind(invoice_no=changes.get("invoice_no", sale.invoice_no)):
            existing = self._live_items(sale)
            ledger = self._ledger(scope.role)
            locked: dict[UUID, LockedBatch] = {}

            if update.items is not None:
                self._validate_lines(update.items, scope.role)
                known = {item.id: item for item in existing}
                for index, line in enumerate(update.items):
                    if line.id is not None and line.id not in known:
                        raise StockValidationError(
                            f"items[{index}].id {line.id} is not a live item of this sale",
                            field=f"items[{index}].id",
                        )
                batch_ids = [line.batch_id_for(scope.role) for line in update.items]
                if reconcile:
                    batch_ids += [self._item_batch_id(item, scope.role) for item in existing]
                locked = ledger.lock_all(batch_ids, scope)

                if reconcile:
                    units_reverted = self._revert_items(ledger, existing, locked, scope)

                self._apply_line_diff(sale, update.items, existing, locked, scope)

            for name, value in changes.items():
                setattr(sale, name, value.value if isinstance(value, Enum) else value)
            if "paid_amount" in changes or "total_amount" in changes:
                sale.is_paid, sale.is_partially_paid = self._payment_flags(
                    sale.paid_amount,
                    sale.total_amount,
                    update.is_paid,
                    update.is_partially_paid,
                )
            sale.updated_by_id = scope.actor_id
            self._flush_header(sale)

            if reconcile:
                units_deducted = self._deduct_lines(
                    ledger,
                    [
                        (line.batch_id_for(scope.role), line.qty, line.loose_qty)
                        for line in update.items
                    ],
                    scope,
                )

        return SaleResult(
            status=SaleStatus.COMMITTED,
            sale_id=sale.id,
            invoice_no=sale.invoice_no,
            line_count=len(self._live_items(sale)),
            units_deducted=units_deducted,
            units_reverted=units_reverted,
        )

    def _apply_line_diff(
        self,
        sale: SalesRecord,
        lines: tuple[SaleLineDraft, ...],
        existing: list[SalesRecordItem],
        locked: dict[UUID, LockedBatch],
        scope: TenancyScope,
    ) -> None:
        known = {item.id: item for item in existing}
        kept: set[UUID] = set()
        new_lines: list[tuple[int, SaleLineDraft]] = []

        for index, line in enumerate(lines):
            if line.id is None:
                new_lines.append((index, line))
                continue
            batch_id = line.batch_id_for(scope.role)
            self._check_product(line, locked[batch_id], index)
            item = known[line.id]
            item.line_no = index
            item.product_id = line.product_id
            item.stock_id = batch_id if scope.role == LedgerRole.ORGANISATION else None
            item.branch_stock_id = batch_id if scope.role == LedgerRole.BRANCH else None
            item.qty = line.qty
            item.loose_qty = line.loose_qty
            item.price = line.price
            item.mrp = line.mrp
            item.amount = _line_amount(line, locked[batch_id].pack_size)
            item.tax_percentage = line.tax_percentage
            item.updated_by_id = scope.actor_id
            kept.add(line.id)

        now = self._clock.now()
        for item in existing:
            if item.id not in kept:
                item.soft_delete(now, scope.actor_id)

        for index, line in new_lines:
            self._add_items(sale, (line,), locked, scope, start_line_no=index)
        self._session.flush()
        logger.info(
            "sale_items_diffed",
            extra={
                "updated": len(kept),
                "inserted": len(new_lines),
                "deleted": len(existing) - len(kept),
            },
        )

    # ------------------------------------------------------------------
    # Void
    # ------------------------------------------------------------------

    def void_sale(self, sale_id: UUID, scope: TenancyScope) -> SaleResult:
        """Soft-delete a sale with its items and payments, and return its stock."""
        return self._run(
            "sale_void",
            scope,
            lambda: self._do_void_sale(sale_id, scope),
            sale_id=str(sale_id),
        )

    def _do_void_sale(self, sale_id: UUID, scope: TenancyScope) -> SaleResult:
        sale = self._lock_sale(sale_id, scope)
        with LogContext.bind(invoice_no=sale.invoice_no):
            items = self._live_items(sale)
            ledger = self._ledger(scope.role)
            locked = ledger.lock_all(
                (self._item_batch_id(item, scope.role) for item in items), scope
            )
            units = self._revert_items(ledger, items, locked, scope)

            now = self._clock.now()
            for item in items:
                item.soft_delete(now, scope.actor_id)
            payments = self._session.execute(
                select(PaymentHistory).where(
                    PaymentHistory.sales_record_id == sale.id,
                    PaymentHistory.deleted_at.is_(None),
                )
            ).scalars()
            for payment in payments:
                payment.soft_delete(now, scope.actor_id)
            sale.soft_delete(now, scope.actor_id)
            self._session.flush()

        return SaleResult(
            status=SaleStatus.COMMITTED,
            sale_id=sale.id,
            invoice_no=sale.invoice_no,
            line_count=len(items),
            units_reverted=units,
        )

    # ------------------------------------------------------------------
    # Invoice numbers
    # ------------------------------------------------------------------

    def preallocate_invoice_number(self, scope: TenancyScope) -> InvoiceNumber:
        """
        Allocate and commit an invoice number ahead of the sale.

        The number is not reserved: if the sale that later uses it fails,
        the sequence keeps the gap.
        """
        return self._run(
            "invoice_preallocation",
            scope,
            lambda: self._allocator.next_invoice_number(scope),
        )

    def last_invoice_number(self, scope: TenancyScope) -> InvoiceNumber | None:
        """Most recently issued invoice number for the scope (read-only)."""
        return self._allocator.last_invoice_number(scope)
