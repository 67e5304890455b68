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
"""Exception hierarchy for the data flow server.

Every error raised by the server derives from DataflowServerException so a
caller can catch the whole family at the process boundary.

Categories:
- InfrastructureException: database, listener and network failures
- StartupException: fatal errors that abort the bootstrap sequence
"""

from __future__ import annotations


class DataflowServerException(Exception):
    """Base exception for all data flow server errors.

    Args:
        message: Human-readable error description.
        code: Machine-readable error code (e.g. "LISTENER_START_FAILED").
        context: Arbitrary key-value pairs for error context and debugging.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context: dict = context if context is not None else {}


class InfrastructureException(DataflowServerException):
    """Infrastructure failures: database, listener, network."""


class StartupException(InfrastructureException):
    """Fatal error during bootstrap; the server cannot start."""


class ConfigurationException(StartupException):
    """The datasource configuration is malformed for the selected mode."""

    def __init__(self, message: str = "URL not properly formatted", *, url: str | None = None) -> None:
        super().__init__(message, code="CONFIGURATION_INVALID_URL", context={"url": url})


class ListenerStartException(StartupException):
    """The embedded database listener failed to bind or start.

    Always raised ``from`` the underlying transport error.
    """

    def __init__(self, port: str, reason: str) -> None:
        self.port = port
        self.reason = reason
        super().__init__(
            f"Failed to start embedded database listener on port '{port}': {reason}",
            code="LISTENER_START_FAILED",
            context={"port": port},
        )


class BootstrapStateException(DataflowServerException):
    """A bootstrap operation was invoked from a state that does not allow it."""
