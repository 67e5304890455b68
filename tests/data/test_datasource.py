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
"""Tests for connection provider construction."""

import pytest
from sqlalchemy import text
from sqlalchemy.pool import AsyncAdaptedQueuePool

from dataflow_server.bootstrap.mode import select_startup_mode
from dataflow_server.config.properties.datasource import DataSourceProperties
from dataflow_server.data.datasource import (
    create_connection_provider,
    embedded_database_name,
    in_memory_url,
    is_in_memory,
    retain_in_memory_database,
)
from dataflow_server.kernel.exceptions import ConfigurationException

pytestmark = pytest.mark.anyio
anyio_backend = "asyncio"


class TestCreateConnectionProvider:
    async def test_embedded_mode_uses_the_named_in_memory_database(self):
        plan = select_startup_mode("jdbc:h2:tcp://localhost:19092/mem:testdb")
        engine = create_connection_provider(plan, DataSourceProperties(url=plan.datasource_url))
        try:
            assert engine.url.database == "file:testdb"
            assert engine.url.query["cache"] == "shared"
            assert is_in_memory(engine)
            assert isinstance(engine.pool, AsyncAdaptedQueuePool)
        finally:
            await engine.dispose()

    async def test_pooled_connections_see_the_same_data(self):
        plan = select_startup_mode("jdbc:h2:tcp://localhost:19092/mem:shared")
        engine = create_connection_provider(plan, DataSourceProperties(url=plan.datasource_url))
        keepalive = await retain_in_memory_database(engine)
        try:
            async with engine.begin() as conn:
                await conn.execute(text("CREATE TABLE t (v INTEGER)"))
                await conn.execute(text("INSERT INTO t VALUES (7)"))
            async with engine.connect() as first, engine.connect() as second:
                assert (await first.execute(text("SELECT v FROM t"))).scalar_one() == 7
                assert (await second.execute(text("SELECT v FROM t"))).scalar_one() == 7
        finally:
            await keepalive.close()
            await engine.dispose()

    async def test_external_mode_uses_configured_url(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'dataflow.db'}"
        plan = select_startup_mode(url)
        engine = create_connection_provider(plan, DataSourceProperties(url=url))
        try:
            assert engine.url.database == str(tmp_path / "dataflow.db")
        finally:
            await engine.dispose()

    async def test_external_mode_without_url_falls_back_to_memory(self):
        plan = select_startup_mode(None)
        engine = create_connection_provider(plan, DataSourceProperties())
        try:
            assert is_in_memory(engine)
            assert engine.url.database.startswith("file:dataflow-")
        finally:
            await engine.dispose()

    async def test_each_unnamed_database_is_private(self):
        first = create_connection_provider(select_startup_mode(None), DataSourceProperties())
        second = create_connection_provider(select_startup_mode(None), DataSourceProperties())
        try:
            assert first.url.database != second.url.database
        finally:
            await first.dispose()
            await second.dispose()

    async def test_echo_is_passed_through(self):
        plan = select_startup_mode(None)
        engine = create_connection_provider(plan, DataSourceProperties(echo=True))
        try:
            assert engine.echo is True
        finally:
            await engine.dispose()

    @pytest.mark.parametrize("url", ["jdbc:postgresql://db:5432/dataflow", "not a url"])
    async def test_unsupported_url_is_a_configuration_error(self, url):
        with pytest.raises(ConfigurationException, match="Unsupported datasource URL"):
            create_connection_provider(select_startup_mode(url), DataSourceProperties(url=url))


class TestInMemoryDatabase:
    @pytest.mark.parametrize(
        ("url", "name"),
        [
            ("jdbc:h2:tcp://localhost:19092/mem:dataflow", "dataflow"),
            ("jdbc:h2:tcp://localhost:19092/mem:dataflow;DB_CLOSE_DELAY=-1", "dataflow"),
            ("jdbc:h2:tcp://localhost:19092/mem:", "dataflow"),
        ],
    )
    async def test_embedded_database_name(self, url, name):
        assert embedded_database_name(url) == name

    async def test_unsafe_name_characters_are_replaced(self):
        assert "file:a_b?" in in_memory_url("a/b")

    async def test_external_database_is_not_retained(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'dataflow.db'}"
        engine = create_connection_provider(select_startup_mode(url), DataSourceProperties(url=url))
        try:
            assert not is_in_memory(engine)
            assert await retain_in_memory_database(engine) is None
        finally:
            await engine.dispose()
