"""Configuration module: frozen client config, builder, and env/CLI loading."""

import argparse
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Union

import httpx

from lokilog.errors import ConfigError

MAX_BATCH_SIZE = 1000


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_labels(value: str) -> dict[str, str]:
    """Parse ``app=api,env=prod`` into a dict. Empty segments are skipped."""
    labels = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, val = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"invalid label {pair!r}, expected key=value")
        labels[key.strip()] = val.strip()
    return labels


@dataclass(frozen=True)
class NoAuth:
    pass


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class BearerAuth:
    token: str = field(repr=False)


Auth = Union[NoAuth, BasicAuth, BearerAuth]


@dataclass(frozen=True)
class ClientConfig:
    host: str = "localhost"
    port: int = 3100
    use_https: bool = False
    labels: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    auth: Auth = field(default_factory=NoAuth)
    batch_size: int = 100
    buffer_size: int = 1000
    period: float = 15.0
    write_timeout: float = 0.1
    send_timeout: float = 5.0
    close_grace: float = 0.0
    user_agent: str = "lokilog"
    http_client: Optional[httpx.Client] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if not isinstance(self.labels, MappingProxyType):
            object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))
        if not 0 < self.batch_size < MAX_BATCH_SIZE:
            raise ConfigError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE - 1}, got {self.batch_size}"
            )
        if self.buffer_size <= 0:
            raise ConfigError(f"buffer_size must be positive, got {self.buffer_size}")
        for name in ("period", "write_timeout", "send_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.close_grace < 0:
            raise ConfigError(f"close_grace must not be negative, got {self.close_grace}")

    @property
    def scheme(self) -> str:
        return "https" if self.use_https else "http"

    @property
    def push_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}/loki/api/v1/push"


class ClientConfigBuilder:
    """Collects options in call order and produces an immutable ClientConfig.

    Later calls overwrite earlier ones field by field; ``with_labels`` merges.
    Basic and bearer credentials are kept side by side and resolved at
    ``build()``: basic wins when both its username and password are set.
    """

    def __init__(self, host: str = ClientConfig.host, port: int = ClientConfig.port):
        self._fields: dict = {"host": host, "port": port}
        self._labels: dict[str, str] = {}
        self._basic: Optional[tuple[str, str]] = None
        self._bearer: str = ""

    def with_labels(self, labels: Mapping[str, str]) -> "ClientConfigBuilder":
        self._labels.update(labels)
        return self

    def with_batch_size(self, size: int) -> "ClientConfigBuilder":
        self._fields["batch_size"] = size
        return self

    def with_buffer_size(self, size: int) -> "ClientConfigBuilder":
        self._fields["buffer_size"] = size
        return self

    def with_period(self, seconds: float) -> "ClientConfigBuilder":
        self._fields["period"] = seconds
        return self

    def with_write_timeout(self, seconds: float) -> "ClientConfigBuilder":
        self._fields["write_timeout"] = seconds
        return self

    def with_send_timeout(self, seconds: float) -> "ClientConfigBuilder":
        self._fields["send_timeout"] = seconds
        return self

    def with_close_grace(self, seconds: float) -> "ClientConfigBuilder":
        self._fields["close_grace"] = seconds
        return self

    def with_https(self, enabled: bool = True) -> "ClientConfigBuilder":
        self._fields["use_https"] = enabled
        return self

    def with_basic_auth(self, username: str, password: str) -> "ClientConfigBuilder":
        self._basic = (username, password)
        return self

    def with_bearer_token(self, token: str) -> "ClientConfigBuilder":
        self._bearer = token
        return self

    def with_http_client(self, client: Optional[httpx.Client]) -> "ClientConfigBuilder":
        # None keeps the previously configured (or default) transport
        if client is not None:
            self._fields["http_client"] = client
        return self

    def with_user_agent(self, user_agent: str) -> "ClientConfigBuilder":
        self._fields["user_agent"] = user_agent
        return self

    def _resolve_auth(self) -> Auth:
        if self._basic is not None and self._basic[0] and self._basic[1]:
            return BasicAuth(*self._basic)
        if self._bearer:
            return BearerAuth(self._bearer)
        return NoAuth()

    def build(self) -> ClientConfig:
        return ClientConfig(
            labels=MappingProxyType(dict(self._labels)),
            auth=self._resolve_auth(),
            **self._fields,
        )


def load_client_config(argv=None) -> ClientConfig:
    """Build ClientConfig from environment variables, then override with CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    # Start with env-var values (falling back to dataclass defaults)
    env_host = os.environ.get("LOKI_HOST", ClientConfig.host)
    env_port = int(os.environ.get("LOKI_PORT", ClientConfig.port))
    env_https = _parse_bool(os.environ.get("LOKI_HTTPS", "false"))
    env_username = os.environ.get("LOKI_USERNAME", "")
    env_password = os.environ.get("LOKI_PASSWORD", "")
    env_token = os.environ.get("LOKI_TOKEN", "")
    env_labels = _parse_labels(os.environ.get("LOKI_LABELS", ""))
    env_batch_size = int(os.environ.get("BATCH_SIZE", ClientConfig.batch_size))
    env_buffer_size = int(os.environ.get("BUFFER_SIZE", ClientConfig.buffer_size))
    env_period = float(os.environ.get("FLUSH_PERIOD", ClientConfig.period))
    env_write_timeout = float(
        os.environ.get("WRITE_TIMEOUT", ClientConfig.write_timeout)
    )
    env_send_timeout = float(os.environ.get("SEND_TIMEOUT", ClientConfig.send_timeout))

    # CLI flags override env vars
    parser = argparse.ArgumentParser(description="Loki log client")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--https", action="store_true", default=False)
    parser.add_argument("--label", action="append", default=[], metavar="KEY=VALUE")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--buffer-size", type=int, default=None)
    parser.add_argument("--period", type=float, default=None)
    parser.add_argument("--write-timeout", type=float, default=None)
    parser.add_argument("--send-timeout", type=float, default=None)

    args = parser.parse_args(argv)

    builder = (
        ClientConfigBuilder(
            args.host if args.host is not None else env_host,
            args.port if args.port is not None else env_port,
        )
        .with_https(args.https or env_https)
        .with_labels(env_labels)
        .with_labels(_parse_labels(",".join(args.label)))
        .with_batch_size(args.batch_size if args.batch_size is not None else env_batch_size)
        .with_buffer_size(args.buffer_size if args.buffer_size is not None else env_buffer_size)
        .with_period(args.period if args.period is not None else env_period)
        .with_write_timeout(
            args.write_timeout if args.write_timeout is not None else env_write_timeout
        )
        .with_send_timeout(
            args.send_timeout if args.send_timeout is not None else env_send_timeout
        )
        .with_basic_auth(env_username, env_password)
        .with_bearer_token(env_token)
    )
    return builder.build()
