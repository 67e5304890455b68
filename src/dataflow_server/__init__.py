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
"""Data flow server: startup mode selection and bootstrap."""

from dataflow_server.bootstrap import (
    BootstrapState,
    ServerBootstrap,
    ServerContext,
    StartupMode,
    StartupPlan,
    extract_port,
    select_startup_mode,
)
from dataflow_server.core.config import Config

__version__ = "0.1.0"

__all__ = [
    "BootstrapState",
    "Config",
    "ServerBootstrap",
    "ServerContext",
    "StartupMode",
    "StartupPlan",
    "__version__",
    "extract_port",
    "select_startup_mode",
]
