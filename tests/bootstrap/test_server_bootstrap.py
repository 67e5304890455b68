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
"""Tests for the ServerBootstrap startup sequence."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from dataflow_server.bootstrap.mode import StartupMode
from dataflow_server.bootstrap.server import BootstrapState, ServerBootstrap, serve
from dataflow_server.core.config import Config
from dataflow_server.data.initializer import build_schema_initializer, uri_registry
from dataflow_server.data.transaction import DataSourceTransactionManager, build_transaction_manager
from dataflow_server.embedded.server import LOOPBACK, start_embedded_listener
from dataflow_server.kernel.exceptions import (
    BootstrapStateException,
    ConfigurationException,
    ListenerStartException,
)

pytestmark = pytest.mark.anyio
anyio_backend = "asyncio"

EMBEDDED_URL = "jdbc:h2:tcp://localhost:0/mem:testdb"


def _config(url: str | None = EMBEDDED_URL, **features) -> Config:
    data = {
        "dataflow": {
            "datasource": {"url": url},
            "embedded": {"allow-others": False},
            "features": features,
        }
    }
    return Config(data)


class _Recorder:
    """Wraps the real bootstrap collaborators and records their call order."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def listener(self, port, **kwargs):
        self.calls.append("listener")
        return await start_embedded_listener(port, **kwargs)

    def transaction_manager(self, engine):
        self.calls.append("transaction_manager")
        return build_transaction_manager(engine)

    def schema_initializer(self, engine, features, **kwargs):
        self.calls.append("schema_initializer")
        return build_schema_initializer(engine, features, **kwargs)

    def bootstrap(self, config: Config) -> ServerBootstrap:
        return ServerBootstrap(
            config,
            listener_starter=self.listener,
            transaction_manager_factory=self.transaction_manager,
            schema_initializer_factory=self.schema_initializer,
        )


class TestEmbeddedMode:
    async def test_starts_listener_then_dependencies(self):
        recorder = _Recorder()
        bootstrap = recorder.bootstrap(_config())
        context = await bootstrap.start()
        try:
            assert recorder.calls == ["listener", "transaction_manager", "schema_initializer"]
            assert context.plan.mode is StartupMode.EMBEDDED
            assert context.plan.port == "0"
            assert context.listener is not None and context.listener.is_running
            assert isinstance(context.transaction_manager, DataSourceTransactionManager)
            assert context.schema_initializer.initialized
            assert bootstrap.state is BootstrapState.READY
            assert bootstrap.is_running
        finally:
            await bootstrap.stop()

    async def test_schema_is_reachable_over_tcp(self):
        async with ServerBootstrap(_config()) as context:
            reader, writer = await asyncio.open_connection(LOOPBACK, context.listener.port)
            writer.write(b"SELECT COUNT(*) FROM stream_definitions\n")
            await writer.drain()
            reply = json.loads(await reader.readline())
            writer.close()
            await writer.wait_closed()
        assert reply["rows"] == [[0]]

    async def test_transaction_manager_and_listener_share_data(self):
        async with ServerBootstrap(_config()) as context:
            async with context.transaction_manager.transaction() as session:
                await session.execute(
                    context.schema_initializer.tables()[0].insert().values(name="log", uri="maven://log")
                )
            reply = await context.listener.execute("SELECT uri FROM uri_registry WHERE name = 'log'")
        assert reply["rows"] == [["maven://log"]]

    async def test_listener_write_does_not_commit_open_session(self):
        async with ServerBootstrap(_config("jdbc:h2:tcp://localhost:0/mem:rollback")) as context:
            with pytest.raises(RuntimeError, match="abort"):
                async with context.transaction_manager.transaction() as session:
                    await session.execute(uri_registry.insert().values(name="a", uri="maven://a"))
                    during = await context.listener.execute("INSERT INTO uri_registry VALUES ('b', 'maven://b')")
                    raise RuntimeError("abort")
            after = await context.listener.execute("INSERT INTO uri_registry VALUES ('b', 'maven://b')")
            reply = await context.listener.execute("SELECT name FROM uri_registry ORDER BY name")

        # the session keeps its own connection; its uncommitted row locks out other writers
        assert "locked" in during["error"]
        assert after == {"rowcount": 1}
        assert reply["rows"] == [["b"]]

    async def test_database_is_released_on_stop(self):
        url = "jdbc:h2:tcp://localhost:0/mem:released"
        async with ServerBootstrap(_config(url)) as context:
            await context.listener.execute("INSERT INTO uri_registry VALUES ('a', 'maven://a')")
        async with ServerBootstrap(_config(url)) as context:
            reply = await context.listener.execute("SELECT COUNT(*) FROM uri_registry")
        assert reply["rows"] == [[0]]

    async def test_listener_failure_builds_nothing(self):
        tm_factory = MagicMock()
        init_factory = MagicMock()
        bootstrap = ServerBootstrap(
            _config(),
            listener_starter=AsyncMock(side_effect=ListenerStartException("0", "Address already in use")),
            transaction_manager_factory=tm_factory,
            schema_initializer_factory=init_factory,
        )

        with pytest.raises(ListenerStartException):
            await bootstrap.start()

        tm_factory.assert_not_called()
        init_factory.assert_not_called()
        assert bootstrap.state is BootstrapState.FAILED
        with pytest.raises(BootstrapStateException):
            bootstrap.context

    async def test_port_in_use_fails_startup(self):
        async with ServerBootstrap(_config()) as first:
            taken = first.listener.port
            second = ServerBootstrap(_config(f"jdbc:h2:tcp://localhost:{taken}/mem:other"))
            with pytest.raises(ListenerStartException):
                await second.start()
            assert second.state is BootstrapState.FAILED

    async def test_failure_after_listener_start_stops_listener(self):
        recorder = _Recorder()
        started = []

        async def listener(port, **kwargs):
            server = await recorder.listener(port, **kwargs)
            started.append(server)
            return server

        failing_initializer = MagicMock()
        failing_initializer.return_value.initialize = AsyncMock(side_effect=RuntimeError("ddl failed"))
        bootstrap = ServerBootstrap(
            _config(),
            listener_starter=listener,
            schema_initializer_factory=failing_initializer,
        )

        with pytest.raises(RuntimeError, match="ddl failed"):
            await bootstrap.start()

        (server,) = started
        assert not server.is_running
        assert server.stop_count == 1
        assert bootstrap.state is BootstrapState.FAILED

    async def test_malformed_embedded_url_fails_before_listener(self):
        starter = AsyncMock()
        bootstrap = ServerBootstrap(
            _config("jdbc:h2:tcp://localhost:19092:x/mem:testdb"),
            listener_starter=starter,
        )
        with pytest.raises(ConfigurationException, match="URL not properly formatted"):
            await bootstrap.start()
        starter.assert_not_called()
        assert bootstrap.state is BootstrapState.FAILED
        assert bootstrap.plan is None

    async def test_invalid_property_fails_startup_for_good(self, monkeypatch):
        monkeypatch.setenv("DATAFLOW_EMBEDDED_ALLOW_OTHERS", "maybe")
        starter = AsyncMock()
        bootstrap = ServerBootstrap(_config(), listener_starter=starter)

        with pytest.raises(ValueError, match="allow_others"):
            await bootstrap.start()

        starter.assert_not_called()
        assert bootstrap.state is BootstrapState.FAILED
        with pytest.raises(BootstrapStateException):
            await bootstrap.start()


class TestExternalMode:
    async def test_builds_dependencies_without_listener(self, tmp_path):
        recorder = _Recorder()
        url = f"sqlite+aiosqlite:///{tmp_path / 'dataflow.db'}"
        bootstrap = recorder.bootstrap(_config(url))
        context = await bootstrap.start()
        try:
            assert recorder.calls == ["transaction_manager", "schema_initializer"]
            assert context.plan.mode is StartupMode.EXTERNAL
            assert context.listener is None
        finally:
            await bootstrap.stop()
        assert (tmp_path / "dataflow.db").exists()

    async def test_missing_url_uses_external_mode(self):
        async with ServerBootstrap(_config(None)) as context:
            assert context.plan.mode is StartupMode.EXTERNAL
            assert context.plan.datasource_url is None

    async def test_file_based_h2_url_is_not_embedded(self):
        starter = AsyncMock()
        bootstrap = ServerBootstrap(_config("jdbc:h2:tcp://localhost:19092/file:db"), listener_starter=starter)
        with pytest.raises(ConfigurationException, match="Unsupported datasource URL"):
            await bootstrap.start()
        starter.assert_not_called()

    async def test_features_drive_schema(self):
        async with ServerBootstrap(_config(None, tasks_enabled=True)) as context:
            names = [t.name for t in context.schema_initializer.tables()]
        assert "task_definitions" in names


class TestLifecycle:
    async def test_stop_is_idempotent_and_stops_listener_once(self):
        bootstrap = ServerBootstrap(_config())
        context = await bootstrap.start()
        await bootstrap.stop()
        await bootstrap.stop()
        assert context.listener.stop_count == 1
        assert not context.listener.is_running
        assert bootstrap.state is BootstrapState.STOPPED

    async def test_stop_before_start_is_a_no_op(self):
        bootstrap = ServerBootstrap(_config())
        await bootstrap.stop()
        assert bootstrap.state is BootstrapState.UNSTARTED

    async def test_cannot_start_twice(self):
        bootstrap = ServerBootstrap(_config(None))
        await bootstrap.start()
        try:
            with pytest.raises(BootstrapStateException):
                await bootstrap.start()
        finally:
            await bootstrap.stop()

    async def test_context_manager_stops_on_error(self):
        bootstrap = ServerBootstrap(_config())
        with pytest.raises(KeyError):
            async with bootstrap as context:
                listener = context.listener
                raise KeyError("boom")
        assert bootstrap.state is BootstrapState.STOPPED
        assert listener.stop_count == 1

    async def test_serve_runs_until_stop_event(self):
        stop_event = asyncio.Event()
        task = asyncio.create_task(serve(_config(), stop_event=stop_event))
        await asyncio.sleep(0.2)
        assert not task.done()
        stop_event.set()
        await asyncio.wait_for(task, timeout=5)
