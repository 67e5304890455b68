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
"""Lifecycle protocol for resources owned by the server bootstrap.

The embedded database listener implements it: the server bootstrap starts it
on the startup path and stops it on teardown. The bootstrap has the same
start/stop shape, but its start() returns the server context.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Lifecycle(Protocol):
    """Start/stop contract for resources with an explicit owner."""

    async def start(self) -> None:
        """Acquire the resource. Failures must raise, never degrade silently."""
        ...

    async def stop(self) -> None:
        """Release the resource. Safe to call more than once."""
        ...

    @property
    def is_running(self) -> bool: ...
