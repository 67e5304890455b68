"""Server logging port and its structlog adapter."""

from dataflow_server.logging.port import LoggingPort
from dataflow_server.logging.structlog_adapter import StructlogAdapter

__all__ = ["LoggingPort", "StructlogAdapter"]
