from dataclasses import dataclass
from typing import Union

from .connection import Connection
from .models import Request


@dataclass(frozen=True)
class ConnectionOpened:
    conn: Connection


@dataclass(frozen=True)
class MessageReceived:
    conn: Connection
    request: Request


@dataclass(frozen=True)
class ConnectionClosed:
    conn: Connection


Event = Union[ConnectionOpened, MessageReceived, ConnectionClosed]
