"""Async SQL client for databases reached through the JavaSybaseLink helper."""

from __future__ import annotations

from typing import Any, Mapping

from .config import AppConfig, BridgeConfig, load_config
from .connection import Connection
from .errors import (
    AbnormalExit,
    ChannelFailure,
    DecodeError,
    NotConnected,
    QueryFailed,
    StartupFailure,
    SybaseLinkError,
    TransactionClosed,
)
from .models import ConnectionState
from .transaction import Transaction, TransactionState

ConfigLike = BridgeConfig | Mapping[str, Any]


def create_connection(config: ConfigLike) -> Connection:
    """Build an unconnected :class:`Connection`."""

    return Connection(config)


async def connect(config: ConfigLike) -> Connection:
    """Create a connection and wait for the helper handshake."""

    connection = create_connection(config)
    await connection.connect()
    return connection


async def query(config: ConfigLike, sql: str) -> Any:
    """Run one query on a fresh connection, always disconnecting afterwards."""

    connection = await connect(config)
    try:
        return await connection.execute(sql)
    finally:
        await connection.disconnect()


__all__ = [
    "AbnormalExit",
    "AppConfig",
    "BridgeConfig",
    "ChannelFailure",
    "Connection",
    "ConnectionState",
    "DecodeError",
    "NotConnected",
    "QueryFailed",
    "StartupFailure",
    "SybaseLinkError",
    "Transaction",
    "TransactionClosed",
    "TransactionState",
    "connect",
    "create_connection",
    "load_config",
    "query",
]
