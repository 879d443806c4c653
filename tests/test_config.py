"""Tests for configuration and listen address parsing."""

import dataclasses

import pytest

from fileserver.config import ListenAddress, ServerConfig, parse_listen_address


class TestParseListenAddress:
    @pytest.mark.parametrize(
        "address, expected",
        [
            ("http://localhost:8000", ListenAddress("http", "localhost", 8000)),
            ("http://0.0.0.0:80/", ListenAddress("http", "0.0.0.0", 80)),
            (":8080", ListenAddress("http", "0.0.0.0", 8080)),
            ("127.0.0.1:0", ListenAddress("http", "127.0.0.1", 0)),
            ("HTTP://example.org:1", ListenAddress("http", "example.org", 1)),
            ("tcp://[::1]:9000", ListenAddress("tcp", "::1", 9000)),
        ],
    )
    def test_accepted_forms(self, address: str, expected: ListenAddress) -> None:
        assert parse_listen_address(address) == expected

    @pytest.mark.parametrize(
        "address",
        [
            "localhost",
            "http://localhost",
            "http://localhost:http",
            "http://localhost:70000",
            "https://localhost:8443",
            "udp://:53",
            "::1:8000",
            "http://[::1]8000",
            "",
        ],
    )
    def test_rejected_forms(self, address: str) -> None:
        with pytest.raises(ValueError):
            parse_listen_address(address)


class TestServerConfig:
    def test_defaults(self) -> None:
        config = ServerConfig()
        assert config.root == "."
        assert config.listen == "http://localhost:8000"
        assert config.debug_level == 2
        assert config.hexdump is False
        assert not config.auth_enabled

    def test_is_immutable(self) -> None:
        config = ServerConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.root = "/tmp"  # type: ignore[misc]

    @pytest.mark.parametrize("level", [-1, 5])
    def test_debug_level_range(self, level: int) -> None:
        with pytest.raises(ValueError):
            ServerConfig(debug_level=level)

    def test_poll_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ServerConfig(poll_interval=0)

    @pytest.mark.parametrize("username, password", [("alice", None), (None, "secret"), ("alice", "secret")])
    def test_auth_enabled_with_either_half(self, username, password) -> None:
        assert ServerConfig(username=username, password=password).auth_enabled
