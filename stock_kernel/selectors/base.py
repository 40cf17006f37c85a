"""
Module: stock_kernel.selectors.base
Responsibility: Abstract base class for read-only selectors.  Selectors are
    the query side: they answer "what does this sale look like" and "how much
    is left in this batch" without taking locks or mutating anything.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain DTOs.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: no add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, never ORM
      instances.
    - Tenancy: every query is filtered by the caller's TenancyScope; rows
      outside the scope are reported as absent (None).
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries and
        returns DTOs.  The caller owns the session and its transaction.
    """

    def __init__(self, session: Session):
        self.session = session
