"""
Tests for stock_kernel.db.engine.session_scope: commit on success, rollback
and re-raise on failure.
"""

from uuid import uuid4

import pytest
from sqlalchemy import delete, func, select

from stock_kernel.db.engine import get_session, session_scope
from stock_kernel.models.catalog import Variant


def _variants_named(name: str) -> int:
    session = get_session()
    try:
        return session.execute(
            select(func.count()).select_from(Variant).where(Variant.name == name)
        ).scalar_one()
    finally:
        session.close()


class TestSessionScope:

    def test_commits_on_success(self, db_tables):
        name = f"scope-{uuid4()}"
        with session_scope() as session:
            session.add(Variant(name=name, pack_size=10, created_by_id=uuid4()))

        try:
            assert _variants_named(name) == 1
        finally:
            with session_scope() as session:
                session.execute(delete(Variant).where(Variant.name == name))

    def test_rolls_back_and_reraises(self, db_tables):
        name = f"scope-{uuid4()}"

        with pytest.raises(RuntimeError, match="boom"):
            with session_scope() as session:
                session.add(Variant(name=name, pack_size=10, created_by_id=uuid4()))
                session.flush()
                raise RuntimeError("boom")

        assert _variants_named(name) == 0
