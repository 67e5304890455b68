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
"""Server bootstrap — the startup sequence of the data flow server.

Startup sequence:
1. Bind datasource, feature and embedded listener properties
2. Select the startup mode from the datasource URL
3. Create the connection provider; an in-memory database is held open
4. Embedded mode only: start the embedded database listener
5. Build the transaction manager and the schema initializer
6. Initialize the schema

Steps 5 and 6 never run unless step 4 succeeded. Any failure releases what
was already acquired and re-raises; the bootstrap is then FAILED for good.
"""

from __future__ import annotations

import asyncio
import enum
import signal
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from dataflow_server.bootstrap.mode import StartupPlan, select_startup_mode
from dataflow_server.config.properties.datasource import DataSourceProperties, EmbeddedServerProperties
from dataflow_server.config.properties.features import FeaturesProperties, RdbmsInitializeProperties
from dataflow_server.core.config import Config
from dataflow_server.data.datasource import create_connection_provider, retain_in_memory_database
from dataflow_server.data.initializer import DataflowRdbmsInitializer, build_schema_initializer
from dataflow_server.data.transaction import DataSourceTransactionManager, build_transaction_manager
from dataflow_server.embedded.server import EmbeddedDatabaseServer, start_embedded_listener
from dataflow_server.kernel.exceptions import BootstrapStateException

logger = structlog.get_logger(__name__)

ListenerStarter = Callable[..., Awaitable[EmbeddedDatabaseServer]]
TransactionManagerFactory = Callable[[AsyncEngine], DataSourceTransactionManager]
SchemaInitializerFactory = Callable[..., DataflowRdbmsInitializer]


class BootstrapState(enum.Enum):
    UNSTARTED = "unstarted"
    MODE_SELECTED = "mode_selected"
    LISTENER_STARTING = "listener_starting"
    LISTENER_RUNNING = "listener_running"
    DEPENDENCIES_BUILT = "dependencies_built"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ServerContext:
    """Everything the bootstrap hands to the rest of the server."""

    plan: StartupPlan
    connection_provider: AsyncEngine
    transaction_manager: DataSourceTransactionManager
    schema_initializer: DataflowRdbmsInitializer
    listener: EmbeddedDatabaseServer | None = None


class ServerBootstrap:
    """Runs the startup sequence once and owns what it creates.

    Usable as an async context manager; leaving the block stops the server::

        async with ServerBootstrap(config) as context:
            async with context.transaction_manager.transaction() as session:
                ...
    """

    def __init__(
        self,
        config: Config,
        *,
        listener_starter: ListenerStarter = start_embedded_listener,
        transaction_manager_factory: TransactionManagerFactory = build_transaction_manager,
        schema_initializer_factory: SchemaInitializerFactory = build_schema_initializer,
    ) -> None:
        self._config = config
        self._start_listener = listener_starter
        self._build_transaction_manager = transaction_manager_factory
        self._build_schema_initializer = schema_initializer_factory

        self._state = BootstrapState.UNSTARTED
        self._plan: StartupPlan | None = None
        self._engine: AsyncEngine | None = None
        self._keepalive: AsyncConnection | None = None
        self._listener: EmbeddedDatabaseServer | None = None
        self._context: ServerContext | None = None
        self._startup_time: float = 0.0

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def plan(self) -> StartupPlan | None:
        return self._plan

    @property
    def context(self) -> ServerContext:
        if self._context is None:
            raise BootstrapStateException(f"Server is not ready (state={self._state.value})")
        return self._context

    @property
    def is_running(self) -> bool:
        return self._state is BootstrapState.READY

    @property
    def startup_time_seconds(self) -> float:
        return self._startup_time

    async def start(self) -> ServerContext:
        if self._state is not BootstrapState.UNSTARTED:
            raise BootstrapStateException(f"Server bootstrap already ran (state={self._state.value})")

        start = time.perf_counter()
        try:
            datasource = self._config.bind(DataSourceProperties)
            embedded = self._config.bind(EmbeddedServerProperties)
            features = self._config.bind(FeaturesProperties)
            rdbms = self._config.bind(RdbmsInitializeProperties)
            plan = select_startup_mode(datasource.url)
        except Exception as exc:
            self._state = BootstrapState.FAILED
            logger.error("server_startup_failed", stage=BootstrapState.UNSTARTED.value, error=str(exc))
            raise
        self._plan = plan
        self._state = BootstrapState.MODE_SELECTED
        logger.info("startup_mode_selected", mode=plan.mode.value, port=plan.port)

        try:
            engine = self._engine = create_connection_provider(plan, datasource)
            self._keepalive = await retain_in_memory_database(engine)

            if plan.embedded:
                self._state = BootstrapState.LISTENER_STARTING
                self._listener = await self._start_listener(
                    plan.port,
                    datasource_url=plan.datasource_url,
                    engine=engine,
                    allow_others=embedded.allow_others,
                )
                self._state = BootstrapState.LISTENER_RUNNING

            transaction_manager = self._build_transaction_manager(engine)
            schema_initializer = self._build_schema_initializer(engine, features, enabled=rdbms.enabled)
            self._state = BootstrapState.DEPENDENCIES_BUILT

            await schema_initializer.initialize()
        except BaseException as exc:
            failed_in = self._state
            self._state = BootstrapState.FAILED
            logger.error("server_startup_failed", mode=plan.mode.value, stage=failed_in.value, error=str(exc))
            await self._release()
            raise

        self._context = ServerContext(
            plan=plan,
            connection_provider=engine,
            transaction_manager=transaction_manager,
            schema_initializer=schema_initializer,
            listener=self._listener,
        )
        self._state = BootstrapState.READY
        self._startup_time = time.perf_counter() - start
        logger.info("server_started", mode=plan.mode.value, startup_time_s=round(self._startup_time, 3))
        return self._context

    async def stop(self) -> None:
        """Tear down the listener and the connection provider; idempotent."""
        if self._state is not BootstrapState.READY:
            return
        logger.info("server_stopping", mode=self._plan.mode.value if self._plan else None)
        try:
            await self._release()
        finally:
            self._state = BootstrapState.STOPPED
            self._context = None
        logger.info("server_stopped")

    async def _release(self) -> None:
        listener, self._listener = self._listener, None
        keepalive, self._keepalive = self._keepalive, None
        engine, self._engine = self._engine, None
        try:
            if listener is not None:
                await listener.stop()
        finally:
            try:
                if keepalive is not None:
                    await keepalive.close()
            finally:
                if engine is not None:
                    await engine.dispose()

    async def __aenter__(self) -> ServerContext:
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


async def serve(config: Config, *, stop_event: asyncio.Event | None = None) -> None:
    """Start the server and keep it up until SIGINT/SIGTERM or *stop_event*."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[Any] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows event loops and non-main threads cannot install handlers
            pass

    try:
        async with ServerBootstrap(config):
            await stop_event.wait()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
