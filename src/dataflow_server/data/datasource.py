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
"""Connection provider construction for both startup modes.

In-memory databases are named shared-cache SQLite databases: every pooled
connection of the engine (sessions, the embedded listener, the schema
initializer) opens its own connection to the same data, so each keeps its
own transaction. SQLite frees such a database when its last connection
closes; :func:`retain_in_memory_database` holds one open for the lifetime
of the server.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import TYPE_CHECKING

from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from dataflow_server.config.properties.datasource import DataSourceProperties
from dataflow_server.kernel.exceptions import ConfigurationException

if TYPE_CHECKING:
    from dataflow_server.bootstrap.mode import StartupPlan

_logger = logging.getLogger(__name__)

DEFAULT_DATABASE_NAME = "dataflow"

_IN_MEMORY_URL = "sqlite+aiosqlite:///file:{name}?mode=memory&cache=shared&uri=true"
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def in_memory_url(name: str) -> str:
    """SQLAlchemy URL of the shared-cache in-memory database *name*."""
    return _IN_MEMORY_URL.format(name=_UNSAFE_NAME_CHARS.sub("_", name))


def embedded_database_name(datasource_url: str) -> str:
    """The ``<name>`` of an embedded ``.../mem:<name>`` URL.

    Connection settings after ``;`` or ``?`` are not part of the name.

    >>> embedded_database_name("jdbc:h2:tcp://localhost:19092/mem:dataflow;DB_CLOSE_DELAY=-1")
    'dataflow'
    """
    _, _, name = datasource_url.partition("/mem:")
    name = re.split(r"[;?]", name, maxsplit=1)[0].strip()
    return name or DEFAULT_DATABASE_NAME


def is_in_memory(connection_provider: AsyncEngine) -> bool:
    return connection_provider.url.query.get("mode") == "memory"


def create_connection_provider(plan: StartupPlan, properties: DataSourceProperties) -> AsyncEngine:
    """Create the async engine every database consumer of the server shares.

    * embedded mode: the in-memory database named by the URL, later exposed
      over TCP by the embedded listener
    * external mode with a URL: a SQLAlchemy engine for that URL
    * external mode without a URL: a private in-memory database
    """
    if plan.embedded or not plan.datasource_url:
        if plan.embedded:
            name = embedded_database_name(plan.datasource_url or "")
        else:
            name = f"{DEFAULT_DATABASE_NAME}-{uuid.uuid4().hex}"
        _logger.debug("Using in-memory database '%s' (mode=%s)", name, plan.mode.value)
        # the dialect picks a single static connection for memory URLs
        return create_async_engine(in_memory_url(name), echo=properties.echo, poolclass=AsyncAdaptedQueuePool)

    try:
        return create_async_engine(plan.datasource_url, echo=properties.echo)
    except (ArgumentError, ImportError) as exc:
        raise ConfigurationException(
            f"Unsupported datasource URL '{plan.datasource_url}': {exc}",
            url=plan.datasource_url,
        ) from exc


async def retain_in_memory_database(connection_provider: AsyncEngine) -> AsyncConnection | None:
    """Open the connection that keeps an in-memory database alive.

    Returns None for any other database. The caller closes the connection
    before disposing of the engine.
    """
    if not is_in_memory(connection_provider):
        return None
    return await connection_provider.connect()
