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
"""Relational data layer: connection provider, transactions, schema."""

from dataflow_server.data.datasource import create_connection_provider, retain_in_memory_database
from dataflow_server.data.initializer import DataflowRdbmsInitializer, build_schema_initializer
from dataflow_server.data.transaction import (
    DataSourceTransactionManager,
    Isolation,
    Propagation,
    build_transaction_manager,
    transactional,
)

__all__ = [
    "DataSourceTransactionManager",
    "DataflowRdbmsInitializer",
    "Isolation",
    "Propagation",
    "build_schema_initializer",
    "build_transaction_manager",
    "create_connection_provider",
    "retain_in_memory_database",
    "transactional",
]
