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
"""Startup mode selection from the datasource URL.

The server runs in one of two mutually exclusive modes:

* **embedded**: the URL names a local in-memory database exposed over TCP
  (``jdbc:h2:tcp://localhost:<port>/mem:<name>``). The bootstrap starts the
  embedded database listener before anything touches the datasource.
* **external**: every other URL, including an absent one. The database is
  a separate, already running service.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import cast

from dataflow_server.kernel.exceptions import ConfigurationException

EMBEDDED_URL_PREFIX = "jdbc:h2:tcp://localhost:"
EMBEDDED_URL_MARKER = "/mem:"

_MALFORMED_URL = "URL not properly formatted"


class StartupMode(enum.Enum):
    """The two startup profiles of the server."""

    EMBEDDED = "embedded"
    EXTERNAL = "external"


@dataclass(frozen=True)
class StartupPlan:
    """Outcome of mode selection; port is only set in embedded mode."""

    mode: StartupMode
    datasource_url: str | None
    port: str | None = None

    @property
    def embedded(self) -> bool:
        return self.mode is StartupMode.EMBEDDED


def is_embedded_url(datasource_url: str | None) -> bool:
    """Return True only when both the prefix and the in-memory marker match."""
    url = datasource_url or ""
    return url.startswith(EMBEDDED_URL_PREFIX) and EMBEDDED_URL_MARKER in url


def select_startup_mode(datasource_url: str | None) -> StartupPlan:
    """Pick the startup mode for *datasource_url*.

    Raises:
        ConfigurationException: the URL selects embedded mode but no port can
            be read from it.
    """
    if not is_embedded_url(datasource_url):
        return StartupPlan(mode=StartupMode.EXTERNAL, datasource_url=datasource_url)

    url = cast(str, datasource_url)
    return StartupPlan(mode=StartupMode.EMBEDDED, datasource_url=url, port=extract_port(url))


def extract_port(url: str) -> str:
    """Return the port segment of an embedded database URL.

    The URL is split on ``:`` (tokens trimmed, empty tokens dropped); the
    fifth token is cut at its first ``/``. The port is not validated here,
    a bad value fails later when the listener binds.

    >>> extract_port("jdbc:h2:tcp://localhost:19092/mem:dataflow")
    '19092'
    """
    tokens = [token.strip() for token in url.split(":")]
    tokens = [token for token in tokens if token]
    if len(tokens) < 5:
        raise ConfigurationException(_MALFORMED_URL, url=url)

    segment = tokens[4]
    slash = segment.find("/")
    if slash < 0:
        raise ConfigurationException(_MALFORMED_URL, url=url)
    return segment[:slash]
