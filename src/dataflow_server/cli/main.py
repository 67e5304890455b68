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
"""dataflow-server CLI — start the server or inspect its startup mode."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import click

from dataflow_server.bootstrap.mode import select_startup_mode
from dataflow_server.bootstrap.server import serve
from dataflow_server.cli.console import console
from dataflow_server.config.properties.datasource import DataSourceProperties
from dataflow_server.core.config import Config
from dataflow_server.kernel.exceptions import DataflowServerException
from dataflow_server.logging.structlog_adapter import StructlogAdapter

_config_option = click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(path_type=Path),
    help="Config file, or directory holding dataflow.yaml (default: current directory).",
)


def _resolve_profiles(profiles: tuple[str, ...]) -> list[str]:
    if profiles:
        return list(profiles)
    env_profiles = os.environ.get("DATAFLOW_PROFILES_ACTIVE", "")
    return [p.strip() for p in env_profiles.split(",") if p.strip()]


def _load_config(config_path: Path | None, profiles: tuple[str, ...] = ()) -> Config:
    if config_path is not None and config_path.is_file():
        return Config.from_file(config_path, active_profiles=_resolve_profiles(profiles))
    if config_path is not None and not config_path.exists():
        console.print(f"[error]Configuration not found:[/error] {config_path}")
        raise SystemExit(1)
    return Config.from_sources(config_path or Path("."), active_profiles=_resolve_profiles(profiles))


@click.group()
@click.version_option(package_name="dataflow-server")
def cli() -> None:
    """Data flow server."""


@cli.command("start")
@_config_option
@click.option("--profile", "profiles", multiple=True, help="Active profile (repeatable).")
def start_command(config_path: Path | None, profiles: tuple[str, ...]) -> None:
    """Start the server and run until interrupted."""
    config = _load_config(config_path, profiles)
    StructlogAdapter().configure(config)

    try:
        asyncio.run(serve(config))
    except DataflowServerException as exc:
        console.print(f"[error]Server failed to start:[/error] {exc}")
        raise SystemExit(1) from exc


@cli.command("mode")
@click.argument("url", required=False)
@_config_option
def mode_command(url: str | None, config_path: Path | None) -> None:
    """Show the startup mode selected for URL (default: the configured URL)."""
    if url is None:
        url = _load_config(config_path).bind(DataSourceProperties).url

    try:
        plan = select_startup_mode(url)
    except DataflowServerException as exc:
        console.print(f"[error]{exc}[/error]")
        raise SystemExit(1) from exc

    console.print(f"[info]mode:[/info] {plan.mode.value}")
    if plan.port is not None:
        console.print(f"[info]port:[/info] {plan.port}")
