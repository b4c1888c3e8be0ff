"""Runtime configuration for the chainfeed pipeline.

Usage
-----
Load settings from the environment:

>>> import os
>>> os.environ["CHAINFEED_WSS_URL"] = "wss://node.example/ws"
>>> config = ChainFeedConfig.from_env()
>>> config.bus_capacity
512

"""

from __future__ import annotations

import dataclasses as dc
import os
import urllib.parse

from chainfeed.bus.channel import DEFAULT_CAPACITY

_DEFAULT_MAX_IN_FLIGHT = 256
_DEFAULT_CONNECT_TIMEOUT_S = 10.0
_DEFAULT_LOG_LEVEL = "INFO"
_WEBSOCKET_SCHEMES = frozenset({"ws", "wss"})


class ChainFeedConfigError(ValueError):
    """Raised when chainfeed configuration is missing or invalid."""

    @classmethod
    def missing_wss_url(cls) -> ChainFeedConfigError:
        """Return an error when no node endpoint is configured."""
        return cls("CHAINFEED_WSS_URL is required")

    @classmethod
    def invalid_wss_url(cls, url: str) -> ChainFeedConfigError:
        """Return an error for an endpoint that is not a websocket URL."""
        return cls(f"CHAINFEED_WSS_URL must be a ws:// or wss:// URL, got: {url!r}")

    @classmethod
    def not_positive(cls, env_var: str, raw: str) -> ChainFeedConfigError:
        """Return an error for a numeric setting that must be positive."""
        return cls(f"{env_var} must be a positive number, got: {raw!r}")


@dc.dataclass(frozen=True, slots=True)
class ChainFeedConfig:
    """Settings for connecting to the node and sizing the pipeline.

    Attributes
    ----------
    wss_url
        Websocket JSON-RPC endpoint of the chain node.
    log_level
        Raw log level string; normalized when logging is configured.
    bus_capacity
        Number of messages the event bus retains per subscriber window.
    max_in_flight
        Upper bound on concurrent ``eth_getTransactionByHash`` requests.
    connect_timeout_s
        Websocket handshake timeout in seconds.

    """

    wss_url: str
    log_level: str = _DEFAULT_LOG_LEVEL
    bus_capacity: int = DEFAULT_CAPACITY
    max_in_flight: int = _DEFAULT_MAX_IN_FLIGHT
    connect_timeout_s: float = _DEFAULT_CONNECT_TIMEOUT_S

    def __post_init__(self) -> None:
        """Validate the endpoint scheme and numeric bounds."""
        scheme = urllib.parse.urlsplit(self.wss_url).scheme.lower()
        if scheme not in _WEBSOCKET_SCHEMES:
            raise ChainFeedConfigError.invalid_wss_url(self.wss_url)
        for name in ("bus_capacity", "max_in_flight", "connect_timeout_s"):
            value = getattr(self, name)
            if value <= 0:
                raise ChainFeedConfigError.not_positive(name, str(value))

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            raise ChainFeedConfigError.not_positive(env_var, raw) from exc
        if value < 1:
            raise ChainFeedConfigError.not_positive(env_var, raw)
        return value

    @staticmethod
    def _parse_positive_float(env_var: str, default: float) -> float:
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            raise ChainFeedConfigError.not_positive(env_var, raw) from exc
        if not value > 0:
            raise ChainFeedConfigError.not_positive(env_var, raw)
        return value

    @classmethod
    def from_env(cls) -> ChainFeedConfig:
        """Create configuration from environment variables.

        Reads the following environment variables:

        - ``CHAINFEED_WSS_URL``: Required websocket endpoint.
        - ``CHAINFEED_LOG_LEVEL``: Optional log level (default ``INFO``).
        - ``CHAINFEED_BUS_CAPACITY``: Optional bus window (default 512).
        - ``CHAINFEED_MAX_IN_FLIGHT``: Optional resolution concurrency
          (default 256).
        - ``CHAINFEED_CONNECT_TIMEOUT_S``: Optional handshake timeout in
          seconds (default 10).

        Raises
        ------
        ChainFeedConfigError
            If the endpoint is missing or any value is invalid.

        """
        wss_url = os.environ.get("CHAINFEED_WSS_URL", "").strip()
        if not wss_url:
            raise ChainFeedConfigError.missing_wss_url()

        return cls(
            wss_url=wss_url,
            log_level=os.environ.get("CHAINFEED_LOG_LEVEL", _DEFAULT_LOG_LEVEL),
            bus_capacity=cls._parse_positive_int(
                "CHAINFEED_BUS_CAPACITY", DEFAULT_CAPACITY
            ),
            max_in_flight=cls._parse_positive_int(
                "CHAINFEED_MAX_IN_FLIGHT", _DEFAULT_MAX_IN_FLIGHT
            ),
            connect_timeout_s=cls._parse_positive_float(
                "CHAINFEED_CONNECT_TIMEOUT_S", _DEFAULT_CONNECT_TIMEOUT_S
            ),
        )
