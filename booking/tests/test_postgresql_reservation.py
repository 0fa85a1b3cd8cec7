"""
Tests for PostgreSQLReservationStore against a mocked asyncpg pool.

The connection records every statement, so the tests can check which
advisory locks are taken, in which order, and how database errors are
translated.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, List
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock

import asyncpg
from asyncpg import Connection, Pool

from booking.exceptions import ReservationContentionError, SlotConflictError
from booking.repos.postgresql.reservation import PostgreSQLReservationStore
from booking.tests.factories import minimal_booking

ADVISORY_LOCK = "pg_advisory_xact_lock"


class TestPostgreSQLReservationStore(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.transactions: List[str] = []
        self.conn = AsyncMock(spec=Connection)
        self.conn.execute.return_value = "SELECT 1"
        self.conn.transaction = MagicMock(side_effect=self._transaction)

        self.pool = MagicMock(spec=Pool)
        self.pool.acquire = MagicMock(side_effect=self._acquire)

        self.store = PostgreSQLReservationStore(
            self.pool, transaction_timeout=timedelta(seconds=10)
        )

    @asynccontextmanager
    async def _acquire(self, timeout: Any = None) -> AsyncIterator[Any]:
        yield self.conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        self.transactions.append("begin")
        try:
            yield
        except BaseException:
            self.transactions.append("rollback")
            raise
        self.transactions.append("commit")

    def locked_keys(self) -> List[str]:
        return [
            c.args[1]
            for c in self.conn.execute.call_args_list
            if ADVISORY_LOCK in c.args[0]
        ]

    async def test_locks_sorted_unique_keys_inside_one_transaction(
        self,
    ) -> None:
        keys = ["user:bob", "link:intro", "user:alice", "user:bob"]

        async with self.store.reserve(keys, timedelta(seconds=2)):
            pass

        self.assertEqual(
            self.locked_keys(), ["link:intro", "user:alice", "user:bob"]
        )
        self.assertEqual(self.transactions, ["begin", "commit"])
        self.pool.acquire.assert_called_once_with(timeout=2.0)

    async def test_timeouts_are_set_before_locking(self) -> None:
        async with self.store.reserve(["user:alice"], timedelta(seconds=2)):
            pass

        first = self.conn.execute.call_args_list[0]
        self.assertIn("lock_timeout", first.args[0])
        self.assertEqual(first.args[1:], ("2000ms", "10000ms"))

    async def test_lock_wait_timeout_is_contention(self) -> None:
        async def execute(query: str, *args: Any) -> str:
            if ADVISORY_LOCK in query and args[0] == "user:bob":
                raise asyncpg.exceptions.LockNotAvailableError(
                    "canceling statement due to lock timeout"
                )
            return "SELECT 1"

        self.conn.execute.side_effect = execute

        with self.assertRaises(ReservationContentionError) as ctx:
            async with self.store.reserve(
                ["user:bob", "user:alice"], timedelta(seconds=1)
            ):
                self.fail("critical section must not run")

        self.assertEqual(ctx.exception.lock_keys, ["user:alice", "user:bob"])
        self.assertEqual(self.transactions, ["begin", "rollback"])

    async def test_statement_timeout_in_body_is_contention(self) -> None:
        with self.assertRaises(ReservationContentionError):
            async with self.store.reserve(
                ["user:alice"], timedelta(seconds=1)
            ):
                raise asyncpg.exceptions.QueryCanceledError(
                    "canceling statement due to statement timeout"
                )

        self.assertEqual(self.transactions, ["begin", "rollback"])

    async def test_pool_timeout_is_contention(self) -> None:
        self.pool.acquire = MagicMock(side_effect=asyncio.TimeoutError())

        with self.assertRaises(ReservationContentionError):
            async with self.store.reserve(
                ["user:alice"], timedelta(seconds=1)
            ):
                pass

    async def test_overlap_rejected_by_database_is_slot_conflict(
        self,
    ) -> None:
        async def execute(query: str, *args: Any) -> str:
            if "INSERT INTO bookings" in query:
                raise asyncpg.exceptions.ExclusionViolationError(
                    "conflicting key value violates exclusion constraint"
                )
            return "SELECT 1"

        self.conn.execute.side_effect = execute

        with self.assertRaises(SlotConflictError) as ctx:
            async with self.store.reserve(
                ["user:alice"], timedelta(seconds=1)
            ) as session:
                await session.insert_booking(minimal_booking())

        self.assertEqual(ctx.exception.user_id, "alice")
        self.assertEqual(self.transactions, ["begin", "rollback"])

    async def test_errors_in_critical_section_propagate(self) -> None:
        with self.assertRaises(RuntimeError):
            async with self.store.reserve(
                ["user:alice"], timedelta(seconds=1)
            ):
                raise RuntimeError("assignment failed")

        self.assertEqual(self.transactions, ["begin", "rollback"])
