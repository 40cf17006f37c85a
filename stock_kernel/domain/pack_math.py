"""
Pack/loose unit arithmetic (``stock_kernel.domain.pack_math``).

Responsibility
--------------
Pure functions translating between whole-pack and loose-unit quantities
for a batch with a given ``pack_size``, and the exact deduction planner
used by every stock ledger.  This is the authoritative copy of the
arithmetic: any client-side pre-validation is advisory only.

Architecture
------------
Layer: **Kernel > Domain** -- zero I/O.  Ledgers load and lock the batch
row, call :func:`plan_deduction`, and write the planned quantities back
with a guarded UPDATE.

Invariants
----------
- Rejections never produce a plan, so the caller has nothing to write.
- Conservation: ``total_units(plan.after) == total_units(before) - requested``.
- After a pack is broken, ``loose_after < pack_size``.

Worked example::

    pack_size=10, packs=5, loose=3; request qty=0, loose_qty=13
    extra=10, packs_to_open=1 -> packs=4, loose=0
    53 units before, 13 requested, 40 after.
"""

from __future__ import annotations

from dataclasses import dataclass

from stock_kernel.exceptions import (
    CannotBreakPackError,
    InsufficientPacksError,
    InsufficientStockError,
    InvalidPackSizeError,
    StockValidationError,
)


@dataclass(frozen=True)
class PackQuantity:
    """A pack/loose pair as stored on a batch row or requested by a line."""

    packs: int
    loose: int

    def units(self, pack_size: int) -> int:
        return total_units(pack_size, self.packs, self.loose)


@dataclass(frozen=True)
class DeductionPlan:
    """Result of a successful validation: what the batch row becomes."""

    before: PackQuantity
    after: PackQuantity
    requested: PackQuantity
    pack_size: int
    packs_opened: int

    @property
    def units_deducted(self) -> int:
        return self.before.units(self.pack_size) - self.after.units(self.pack_size)


def total_units(pack_size: int, packs: int, loose: int) -> int:
    """``packs * pack_size + loose``."""
    return packs * pack_size + loose


def total_requested(pack_size: int, requested_qty: int, requested_loose_qty: int) -> int:
    return total_units(pack_size, requested_qty, requested_loose_qty)


def total_available(
    pack_size: int, available_quantity: int, available_loose_quantity: int
) -> int:
    return total_units(pack_size, available_quantity, available_loose_quantity)


def resolve_pack_size(raw: object, default: int = 1) -> int:
    """
    Validate a variant's ``pack_size``.

    ``None`` means the variant genuinely has no pack size and ``default``
    applies.  Anything else must be a positive integer; integral floats and
    numeric strings coming from loosely typed payloads are accepted.

    Raises:
        InvalidPackSizeError: zero, negative, fractional, boolean or
            non-numeric values.
    """
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise InvalidPackSizeError(raw)
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        if not raw.is_integer():
            raise InvalidPackSizeError(raw)
        value = int(raw)
    elif isinstance(raw, str):
        try:
            value = int(raw.strip())
        except ValueError:
            raise InvalidPackSizeError(raw) from None
    else:
        raise InvalidPackSizeError(raw)
    if value <= 0:
        raise InvalidPackSizeError(raw)
    return value


def require_non_negative_int(value: object, field: str) -> int:
    """Quantities on the wire must be non-negative integers."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise StockValidationError(
            f"{field} must be an integer, got {value!r}", field=field
        )
    if value < 0:
        raise StockValidationError(f"{field} must not be negative, got {value}", field=field)
    return value


def plan_deduction(
    pack_size: int,
    available: PackQuantity,
    requested: PackQuantity,
    batch_id: str = "",
) -> DeductionPlan:
    """
    Validate a deduction and compute the batch's new quantities.

    1. Reject if requested units exceed available units.
    2. Take loose units first, opening ``ceil(extra / pack_size)`` packs
       when the loose counter is short.
    3. Take whole packs from what remains.

    Raises:
        InsufficientStockError, CannotBreakPackError, InsufficientPacksError.
    """
    requested_units = requested.units(pack_size)
    available_units = available.units(pack_size)
    if requested_units > available_units:
        raise InsufficientStockError(batch_id, requested_units, available_units)

    packs = available.packs
    loose = available.loose
    packs_opened = 0

    if requested.loose <= loose:
        loose -= requested.loose
    else:
        extra_needed = requested.loose - loose
        packs_to_open = -(-extra_needed // pack_size)
        if packs < packs_to_open:
            raise CannotBreakPackError(batch_id, packs_to_open, packs)
        packs -= packs_to_open
        loose = packs_to_open * pack_size - extra_needed
        packs_opened = packs_to_open

    if packs < requested.packs:
        raise InsufficientPacksError(batch_id, requested.packs, packs)
    packs -= requested.packs

    plan = DeductionPlan(
        before=available,
        after=PackQuantity(packs=packs, loose=loose),
        requested=requested,
        pack_size=pack_size,
        packs_opened=packs_opened,
    )
    # INVARIANT: conservation of units
    assert plan.units_deducted == requested_units, (
        f"Conservation violated: deducted {plan.units_deducted}, "
        f"requested {requested_units}"
    )
    return plan
