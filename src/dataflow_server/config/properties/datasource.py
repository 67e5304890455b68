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
"""Datasource configuration properties."""

from __future__ import annotations

from dataclasses import dataclass

from dataflow_server.core.config import config_properties


@config_properties(prefix="dataflow.datasource")
@dataclass
class DataSourceProperties:
    """Configuration for the server datasource (dataflow.datasource.*).

    ``url`` selects the startup mode. A ``jdbc:h2:tcp://localhost:<port>/mem:<name>``
    URL starts the embedded database listener; anything else is handed to
    SQLAlchemy as the URL of an external database.
    """

    url: str | None = None
    echo: bool = False


@config_properties(prefix="dataflow.embedded")
@dataclass
class EmbeddedServerProperties:
    """Embedded database listener settings (dataflow.embedded.*)."""

    allow_others: bool = True
