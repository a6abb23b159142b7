"""Unit of Work -- the only owner of relational transaction primitives.

A UnitOfWork wraps one AsyncSession and exposes typed repositories for every
table the meeting system touches. Higher layers never call session.begin()
or session.commit() directly; they go through:

- begin_transaction() / commit() / rollback(): explicit transaction control
- complete(): save pending writes without opening a transaction of its own
- transaction(scope=None): async context manager that either opens and owns
  a transaction or joins the caller's TransactionScope

Invariants:
- At most one transaction per UnitOfWork instance. A second
  begin_transaction() is logged and ignored.
- A failed commit (flush or commit step) rolls back before re-raising, so
  callers never roll back by hand after a commit error.
- Rollback also happens on asyncio.CancelledError; the cancellation is
  re-raised once the transaction is closed.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar

import structlog
import sqlalchemy as sa
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.meeting_system.core.errors import TransactionNotActiveError
from src.meeting_system.meetings.models import (
    AttachmentModel,
    MeetingModel,
    MeetingsLogModel,
    ParticipantModel,
    RoleModel,
    UserModel,
    UserRoleModel,
)

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT")


# ── Repository ──────────────────────────────────────────────────────────────


class Repository(Generic[ModelT]):
    """Generic async data access for one mapped model.

    Writes (add/remove) are only staged in the session; they reach the
    database on the owning UnitOfWork's complete() or commit().

    Args:
        session: The AsyncSession shared by the whole unit of work.
        model: Mapped class this repository serves.
    """

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self._session = session
        self._model = model

    def add(self, entity: ModelT) -> None:
        self._session.add(entity)

    def add_all(self, entities: Iterable[ModelT]) -> None:
        self._session.add_all(list(entities))

    async def remove(self, entity: ModelT) -> None:
        await self._session.delete(entity)

    async def get(self, ident: Any) -> ModelT | None:
        return await self._session.get(self._model, ident)

    async def first(
        self,
        *criteria: Any,
        options: Sequence[Any] = (),
        populate_existing: bool = False,
    ) -> ModelT | None:
        """Return the first row matching all criteria, or None.

        populate_existing refreshes rows already in the session identity map
        (including their eager-loaded collections).
        """
        stmt = select(self._model).where(*criteria).options(*options).limit(1)
        if populate_existing:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def exists(self, *criteria: Any) -> bool:
        stmt = select(sa.exists().where(*criteria))
        return bool(await self._session.scalar(stmt))

    async def list(
        self,
        *criteria: Any,
        options: Sequence[Any] = (),
        order_by: Sequence[Any] = (),
        populate_existing: bool = False,
    ) -> list[ModelT]:
        stmt = select(self._model).where(*criteria).options(*options).order_by(*order_by)
        if populate_existing:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return list(result.scalars().unique().all())

    async def delete_where(self, *criteria: Any) -> int:
        """Bulk-delete every matching row in a single DELETE statement.

        Returns:
            Number of rows deleted.
        """
        result = await self._session.execute(delete(self._model).where(*criteria))
        return result.rowcount or 0


# ── Transaction Scope ───────────────────────────────────────────────────────


class TransactionScope:
    """Handle to a transaction opened by a UnitOfWork.

    Passing a scope into a lifecycle operation makes that operation join the
    transaction instead of opening (and committing) its own.

    Work that must only happen once the data is durable (e.g. scheduling a
    job that reads it back) is registered with after_commit(); callbacks run
    after the owner commits and are dropped if the transaction rolls back.
    """

    def __init__(self, unit_of_work: UnitOfWork, transaction_id: str) -> None:
        self.unit_of_work = unit_of_work
        self.transaction_id = transaction_id
        self._after_commit: list[Callable[[], None]] = []

    @property
    def active(self) -> bool:
        return self.unit_of_work.transaction_id == self.transaction_id

    def after_commit(self, callback: Callable[[], None]) -> None:
        self._after_commit.append(callback)

    def _run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            callback()

    def _discard_after_commit(self) -> None:
        if self._after_commit:
            logger.info(
                "uow.after_commit_discarded",
                transaction_id=self.transaction_id,
                count=len(self._after_commit),
            )
        self._after_commit = []


# ── Unit of Work ────────────────────────────────────────────────────────────


class UnitOfWork:
    """Repositories plus transaction control over a single AsyncSession.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            async with uow.transaction() as scope:
                uow.meetings.add(meeting)

    Args:
        session_factory: async_sessionmaker producing the session to wrap.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session = session_factory()
        self._transaction_id: str | None = None
        self._closed = False

        self.users = Repository(self._session, UserModel)
        self.roles = Repository(self._session, RoleModel)
        self.user_roles = Repository(self._session, UserRoleModel)
        self.meetings = Repository(self._session, MeetingModel)
        self.participants = Repository(self._session, ParticipantModel)
        self.attachments = Repository(self._session, AttachmentModel)
        self.meetings_log = Repository(self._session, MeetingsLogModel)

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def transaction_id(self) -> str | None:
        return self._transaction_id

    @property
    def in_transaction(self) -> bool:
        return self._transaction_id is not None

    # ── Explicit transaction control ─────────────────────────────────────

    async def begin_transaction(self) -> None:
        """Begin a transaction unless one is already active (then a no-op)."""
        if self._transaction_id is not None:
            logger.info("uow.transaction_already_active", transaction_id=self._transaction_id)
            return

        # Reads issued before this point may have auto-begun a session
        # transaction; it becomes the explicit one.
        if not self._session.in_transaction():
            await self._session.begin()
        self._transaction_id = uuid.uuid4().hex
        logger.info("uow.transaction_started", transaction_id=self._transaction_id)

    async def commit(self) -> None:
        """Flush pending writes and commit the active transaction.

        Raises:
            TransactionNotActiveError: If begin_transaction() was not called.
        """
        if self._transaction_id is None:
            raise TransactionNotActiveError(
                "Cannot commit a transaction that has not been started. Call begin_transaction first."
            )

        transaction_id = self._transaction_id
        try:
            await self._session.flush()
            await self._session.commit()
        except BaseException:
            logger.error("uow.commit_failed", transaction_id=transaction_id, exc_info=True)
            try:
                await self.rollback()
            except Exception:
                # The commit error is the one callers need to see
                logger.error("uow.rollback_after_commit_failed", transaction_id=transaction_id, exc_info=True)
            raise
        self._transaction_id = None
        logger.info("uow.transaction_committed", transaction_id=transaction_id)

    async def rollback(self) -> None:
        """Roll back the active transaction. No-op when none is active."""
        if self._transaction_id is None:
            logger.warning("uow.rollback_without_transaction")
            return

        transaction_id = self._transaction_id
        try:
            await self._session.rollback()
        finally:
            self._transaction_id = None
        logger.warning("uow.transaction_rolled_back", transaction_id=transaction_id)

    async def complete(self) -> None:
        """Save pending writes.

        Inside an explicit transaction the writes are flushed and become part
        of it. Outside one they are committed immediately as a single save.
        """
        if self._transaction_id is not None:
            await self._session.flush()
            return

        try:
            await self._session.commit()
        except BaseException:
            await self._session.rollback()
            raise

    # ── Scoped transactions ──────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self, scope: TransactionScope | None = None) -> AsyncIterator[TransactionScope]:
        """Run a block inside a transaction, owned or joined.

        Args:
            scope: An active scope from this unit of work to join. When None,
                a transaction is opened, committed on success and rolled back
                on any exception.

        Yields:
            The scope the block runs in.
        """
        if scope is not None:
            if scope.unit_of_work is not self:
                raise ValueError("TransactionScope belongs to a different UnitOfWork")
            if not scope.active:
                raise TransactionNotActiveError(
                    f"Transaction {scope.transaction_id} is no longer active"
                )
            yield scope
            await self._session.flush()
            return

        await self.begin_transaction()
        owned = TransactionScope(self, self._transaction_id)
        try:
            yield owned
        except BaseException:
            owned._discard_after_commit()
            if owned.active:
                await self.rollback()
            raise
        if owned.active:
            try:
                await self.commit()
            except BaseException:
                owned._discard_after_commit()
                raise
        owned._run_after_commit()

    # ── Disposal ─────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Roll back any open transaction and release the session."""
        if self._closed:
            return
        try:
            if self._transaction_id is not None:
                await self.rollback()
        finally:
            await self._session.close()
            self._closed = True

    async def __aenter__(self) -> UnitOfWork:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
