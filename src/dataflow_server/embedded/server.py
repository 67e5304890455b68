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
"""Embedded database TCP listener.

Exposes the in-memory database of the server to other processes. The wire
format is line oriented: a client writes one SQL statement per line and
reads back one JSON document per statement::

    -> SELECT name, uri FROM uri_registry
    <- {"columns": ["name", "uri"], "rows": [["log", "maven://..."]]}
    -> DELETE FROM uri_registry
    <- {"rowcount": 1}
    -> SELEC 1
    <- {"error": "near \\"SELEC\\": syntax error"}

A line that is not UTF-8 gets an error reply. A line longer than
MAX_STATEMENT_BYTES gets one too, and the connection is then closed.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from dataflow_server.kernel.exceptions import ListenerStartException

logger = structlog.get_logger(__name__)

ALL_INTERFACES = "0.0.0.0"
LOOPBACK = "127.0.0.1"
MAX_STATEMENT_BYTES = 64 * 1024


class EmbeddedDatabaseServer:
    """Listener handle for the embedded database.

    Owned by the server bootstrap; :meth:`stop` may be called any number of
    times and only the first call after a successful start does anything.
    """

    def __init__(self, engine: AsyncEngine, port: int, *, allow_others: bool = True) -> None:
        self._engine = engine
        self._requested_port = port
        self._host = ALL_INTERFACES if allow_others else LOOPBACK
        self._server: asyncio.Server | None = None
        self._clients: set[asyncio.StreamWriter] = set()
        self._lock = asyncio.Lock()
        self._stop_count = 0

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        """The bound port; differs from the requested one only when that was 0."""
        if self._server is not None and self._server.sockets:
            return int(self._server.sockets[0].getsockname()[1])
        return self._requested_port

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def stop_count(self) -> int:
        return self._stop_count

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await asyncio.start_server(
            self._handle_client, self._host, self._requested_port, limit=MAX_STATEMENT_BYTES
        )
        logger.info("embedded_database_listening", host=self._host, port=self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        server, self._server = self._server, None
        self._stop_count += 1

        server.close()
        for writer in list(self._clients):
            writer.close()
        await server.wait_closed()
        logger.info("embedded_database_stopped", port=self._requested_port)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        if self._server is None:
            # accepted just before stop() closed the listener
            writer.close()
            return
        self._clients.add(writer)
        logger.debug("embedded_client_connected", peer=peer)
        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError as exc:
                    # the rest of the oversized line cannot be resynchronized
                    await self._reply(writer, {"error": f"Statement exceeds {MAX_STATEMENT_BYTES} bytes: {exc}"})
                    break
                if not line:
                    break
                try:
                    statement = line.decode("utf-8").strip()
                except UnicodeDecodeError as exc:
                    await self._reply(writer, {"error": f"Statement is not valid UTF-8: {exc}"})
                    continue
                if not statement:
                    continue
                await self._reply(writer, await self.execute(statement))
        except (ConnectionError, asyncio.IncompleteReadError) as exc:
            logger.debug("embedded_client_dropped", peer=peer, error=str(exc))
        finally:
            self._clients.discard(writer)
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()
            logger.debug("embedded_client_disconnected", peer=peer)

    @staticmethod
    async def _reply(writer: asyncio.StreamWriter, response: dict[str, Any]) -> None:
        writer.write(json.dumps(response, default=str).encode("utf-8") + b"\n")
        await writer.drain()

    async def execute(self, statement: str) -> dict[str, Any]:
        """Run one statement in its own transaction and describe the result.

        SQL errors are returned to the client, never raised.
        """
        async with self._lock:
            try:
                async with self._engine.begin() as conn:
                    result = await conn.exec_driver_sql(statement)
                    if result.returns_rows:
                        columns = list(result.keys())
                        rows = [list(row) for row in result.all()]
                        return {"columns": columns, "rows": rows}
                    return {"rowcount": result.rowcount}
            except SQLAlchemyError as exc:
                orig = getattr(exc, "orig", None)
                return {"error": str(orig if orig is not None else exc)}


async def start_embedded_listener(
    port: str,
    *,
    datasource_url: str,
    engine: AsyncEngine,
    allow_others: bool = True,
) -> EmbeddedDatabaseServer:
    """Start the embedded database listener on *port*.

    Raises:
        ListenerStartException: the port is not a number or cannot be bound.
    """
    logger.info("starting_embedded_database", url=datasource_url, port=port, allow_others=allow_others)
    try:
        server = EmbeddedDatabaseServer(engine, int(port), allow_others=allow_others)
        await server.start()
    except (ValueError, OverflowError, OSError) as exc:
        raise ListenerStartException(port, str(exc)) from exc
    return server
