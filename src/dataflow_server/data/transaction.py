# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Transaction manager over the server connection provider."""

from __future__ import annotations

import enum
import functools
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

F = TypeVar("F", bound=Callable[..., Any])

_active_session_var: ContextVar[AsyncSession | None] = ContextVar(
    "_active_session_var",
    default=None,
)


class Propagation(enum.Enum):
    """Transaction propagation behaviour."""

    REQUIRED = "REQUIRED"
    REQUIRES_NEW = "REQUIRES_NEW"
    SUPPORTS = "SUPPORTS"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    NEVER = "NEVER"
    MANDATORY = "MANDATORY"


class Isolation(enum.Enum):
    """Transaction isolation level."""

    DEFAULT = "DEFAULT"
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class DataSourceTransactionManager:
    """Binds sessions to transactions on a single connection provider.

    The active session is tracked in a ContextVar so
    :func:`transactional` methods called inside :meth:`transaction` join it.
    """

    def __init__(self, connection_provider: AsyncEngine) -> None:
        self._engine = connection_provider
        self._session_factory = async_sessionmaker(connection_provider, expire_on_commit=False)

    @property
    def connection_provider(self) -> AsyncEngine:
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    @staticmethod
    def current_session() -> AsyncSession | None:
        """The session of the transaction active in this context, if any."""
        return _active_session_var.get()

    @asynccontextmanager
    async def transaction(self, isolation: Isolation = Isolation.DEFAULT) -> AsyncIterator[AsyncSession]:
        """Open a session, begin a transaction, commit on exit, roll back on error."""
        async with self._session_factory() as session, session.begin():
            if isolation is not Isolation.DEFAULT:
                await session.connection(execution_options={"isolation_level": isolation.value})
            token = _active_session_var.set(session)
            try:
                yield session
            finally:
                _active_session_var.reset(token)


def build_transaction_manager(connection_provider: AsyncEngine) -> DataSourceTransactionManager:
    return DataSourceTransactionManager(connection_provider)


def _resolve_manager(self_arg: Any) -> DataSourceTransactionManager | None:
    manager: DataSourceTransactionManager | None = getattr(self_arg, "_transaction_manager", None)
    return manager


def transactional(
    propagation: Propagation = Propagation.REQUIRED,
    isolation: Isolation = Isolation.DEFAULT,
) -> Callable[[F], F]:
    """Declarative transaction demarcation for async service methods.

    Resolves the manager from ``self._transaction_manager``. Inside the
    method the session is available from
    :meth:`DataSourceTransactionManager.current_session`.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            existing = _active_session_var.get()

            if propagation is Propagation.NEVER:
                if existing is not None:
                    raise RuntimeError("Propagation.NEVER — active transaction exists")
                return await func(*args, **kwargs)

            if propagation is Propagation.NOT_SUPPORTED:
                token = _active_session_var.set(None)
                try:
                    return await func(*args, **kwargs)
                finally:
                    _active_session_var.reset(token)

            if propagation is Propagation.SUPPORTS:
                return await func(*args, **kwargs)

            if propagation is Propagation.MANDATORY:
                if existing is None:
                    raise RuntimeError("Propagation.MANDATORY — no active transaction")
                return await func(*args, **kwargs)

            if propagation is Propagation.REQUIRED and existing is not None:
                return await func(*args, **kwargs)

            manager = _resolve_manager(args[0]) if args else None
            if manager is None:
                raise RuntimeError(
                    "No _transaction_manager available on self; "
                    "ensure the service holds a DataSourceTransactionManager"
                )

            async with manager.transaction(isolation=isolation):
                return await func(*args, **kwargs)

        wrapper.__dataflow_transactional__ = True  # type: ignore[attr-defined]
        wrapper.__dataflow_propagation__ = propagation  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
