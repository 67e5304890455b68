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
"""Relational schema initializer driven by the server feature flags."""

from __future__ import annotations

import logging

from sqlalchemy import Column, MetaData, String, Table, Text
from sqlalchemy.ext.asyncio import AsyncEngine

from dataflow_server.config.properties.features import FeaturesProperties

_logger = logging.getLogger(__name__)

metadata = MetaData()

uri_registry = Table(
    "uri_registry",
    metadata,
    Column("name", String(255), primary_key=True),
    Column("uri", Text, nullable=False),
)

stream_definitions = Table(
    "stream_definitions",
    metadata,
    Column("definition_name", String(255), primary_key=True),
    Column("definition", Text, nullable=False),
)

task_definitions = Table(
    "task_definitions",
    metadata,
    Column("definition_name", String(255), primary_key=True),
    Column("definition", Text, nullable=False),
)

deployment_ids = Table(
    "deployment_ids",
    metadata,
    Column("deployment_key", String(255), primary_key=True),
    Column("deployment_id", String(255), nullable=False),
)


class DataflowRdbmsInitializer:
    """Creates the server tables for the enabled features.

    * ``uri_registry`` is always created
    * streams add ``stream_definitions`` and ``deployment_ids``
    * tasks add ``task_definitions`` and ``deployment_ids``

    Creation is idempotent (existing tables are left alone). With
    ``enabled=False`` nothing is touched, for schemas managed elsewhere.
    """

    def __init__(
        self,
        connection_provider: AsyncEngine,
        features: FeaturesProperties,
        *,
        enabled: bool = True,
    ) -> None:
        self._engine = connection_provider
        self._features = features
        self._enabled = enabled
        self._initialized = False

    @property
    def features(self) -> FeaturesProperties:
        return self._features

    @property
    def initialized(self) -> bool:
        return self._initialized

    def tables(self) -> list[Table]:
        """The tables selected by the current feature flags, in creation order."""
        selected = [uri_registry]
        if self._features.streams_enabled:
            selected.append(stream_definitions)
        if self._features.tasks_enabled:
            selected.append(task_definitions)
        if self._features.streams_enabled or self._features.tasks_enabled:
            selected.append(deployment_ids)
        return selected

    async def initialize(self) -> list[str]:
        """Create the selected tables; returns their names."""
        if not self._enabled:
            _logger.info("Schema initialization disabled (dataflow.rdbms.initialize.enabled=false)")
            return []

        selected = self.tables()
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all, tables=selected, checkfirst=True)

        self._initialized = True
        names = [table.name for table in selected]
        _logger.info("Database schema initialized (%d tables: %s)", len(names), ", ".join(names))
        return names


def build_schema_initializer(
    connection_provider: AsyncEngine,
    features: FeaturesProperties,
    *,
    enabled: bool = True,
) -> DataflowRdbmsInitializer:
    return DataflowRdbmsInitializer(connection_provider, features, enabled=enabled)
