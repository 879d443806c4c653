from dataclasses import dataclass
from typing import NamedTuple, Optional

VERSION = "0.1.0"
DEFAULT_LISTEN = "http://localhost:8000"
LISTEN_SCHEMES = ("http", "tcp")


class ListenAddress(NamedTuple):
    scheme: str
    host: str
    port: int


def parse_listen_address(address: str) -> ListenAddress:
    """
    Accepts ``scheme://host:port``, ``host:port`` and ``:port``.
    IPv6 hosts must be bracketed. An empty host means all interfaces.
    """
    scheme, sep, rest = address.partition("://")
    if not sep:
        scheme, rest = "http", address
    scheme = scheme.lower()
    if scheme not in LISTEN_SCHEMES:
        raise ValueError(f"unsupported scheme {scheme!r}")

    rest = rest.rstrip("/")
    if rest.startswith("["):
        host, bracket, tail = rest[1:].partition("]")
        if not bracket or not tail.startswith(":"):
            raise ValueError("malformed IPv6 address")
        port_str = tail[1:]
    else:
        host, colon, port_str = rest.rpartition(":")
        if not colon:
            raise ValueError("missing port")
        if ":" in host:
            raise ValueError("IPv6 hosts must be bracketed")

    if not port_str.isdigit() or int(port_str) > 65535:
        raise ValueError(f"bad port {port_str!r}")
    return ListenAddress(scheme, host or "0.0.0.0", int(port_str))


@dataclass(frozen=True)
class ServerConfig:
    root: str = "."
    listen: str = DEFAULT_LISTEN
    hexdump: bool = False
    debug_level: int = 2
    username: Optional[str] = None
    password: Optional[str] = None
    realm: str = "fileserver"
    dir_listing: bool = True
    backlog: int = 128
    poll_interval: float = 1.0
    idle_timeout: float = 30.0
    drain_timeout: float = 5.0
    max_header_bytes: int = 65536
    max_body_bytes: int = 1024 * 1024
    chunk_size: int = 64 * 1024

    def __post_init__(self) -> None:
        if not 0 <= self.debug_level <= 4:
            raise ValueError(f"debug level must be between 0 and 4, got {self.debug_level}")
        if self.poll_interval <= 0:
            raise ValueError("poll interval must be positive")

    @property
    def auth_enabled(self) -> bool:
        return self.username is not None or self.password is not None
