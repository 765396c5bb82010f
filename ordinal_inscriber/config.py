"""Shared configuration loader for Ordinal Inscriber."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".ordinal-inscriber.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

DEFAULT_CONTAINER_PATH = "/ord/data/"
DEFAULT_CACHE_LIMIT_BYTES = 5 * 1024 * 1024 * 1024
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_OPTIMIZE_THRESHOLD_BYTES = 46 * 1024
DEFAULT_SERVICE_PORT = 3500
DEFAULT_FILE_SERVER_PORT = 8000
DEFAULT_BTC_RPC_PORT = 8332


@dataclass
class RPCConfig:
    """Configuration container for Bitcoin Core RPC connection details."""

    user: str
    password: str
    host: str = "127.0.0.1"
    port: int = DEFAULT_BTC_RPC_PORT
    use_https: bool = False
    wallet: str | None = None

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class AppConfig:
    """Settings for the inscriber service and its container targets.

    The container and network fields hold *explicit* overrides only. When a
    field is ``None`` the environment resolver probes for a value instead.
    """

    ord_container: str | None = None
    bitcoin_container: str | None = None
    ord_api_url: str | None = None
    ord_api_port: int | None = None
    ord_rpc_port: int | None = None
    node_ip: str | None = None
    simplified_startup: bool = False
    umbrel_hint: bool = False
    container_path: str = DEFAULT_CONTAINER_PATH
    cache_dir: Path | None = None
    cache_limit_bytes: int = DEFAULT_CACHE_LIMIT_BYTES
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    optimize_threshold_bytes: int = DEFAULT_OPTIMIZE_THRESHOLD_BYTES
    host: str = "0.0.0.0"
    port: int = DEFAULT_SERVICE_PORT
    file_server_port: int = DEFAULT_FILE_SERVER_PORT
    strict_resolution: bool = False
    geniidata_api_key: str | None = None

    @property
    def staging_dir(self) -> Path:
        return self.cache_dir or Path(tempfile.gettempdir())


def container_file_path(container_path: str, file_name: str = "") -> str:
    """Join a directory inside the container and a file name with one separator."""

    return f"{container_path.rstrip('/')}/{file_name}"


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _resolve_path(config_path: str | Path | None) -> tuple[Path, bool]:
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )
    return path, explicit_path


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name, {}) if isinstance(file_config, dict) else {}
    if section and not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section or {}


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_port(raw: Any, *, source: str) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        port = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid port in {source}: {raw}") from exc
    if not 0 < port < 65536:
        raise ConfigurationError(f"Port out of range in {source}: {raw}")
    return port


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return default


def _parse_endpoint(raw: str | None) -> tuple[str | None, int | None, bool | None]:
    if not raw:
        return None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.hostname:
        raise ConfigurationError(f"Invalid endpoint URL: {raw}")
    host = parsed.hostname or None
    port = parsed.port
    use_https = parsed.scheme.lower() == "https"
    return host, port, use_https


def load_app_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load service configuration from overrides, environment and optional YAML."""

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    containers = _section(file_config, "containers", path)
    service = _section(file_config, "service", path)
    cache = _section(file_config, "cache", path)
    override_map = dict(overrides or {})

    ord_api_url = _first_value(
        override_map.get("ord_api_url"), env_map.get("ORD_API_URL"), containers.get("ord_api_url")
    )
    if ord_api_url:
        _parse_endpoint(ord_api_url)

    cache_dir_raw = _first_value(
        override_map.get("cache_dir"), env_map.get("CACHE_DIR"), cache.get("directory")
    )

    return AppConfig(
        ord_container=_first_value(
            override_map.get("ord_container"),
            env_map.get("ORD_RPC_HOST"),
            env_map.get("ORD_CONTAINER_NAME"),
            containers.get("ord"),
        ),
        bitcoin_container=_first_value(
            override_map.get("bitcoin_container"),
            env_map.get("BITCOIN_CONTAINER_NAME"),
            containers.get("bitcoin"),
        ),
        ord_api_url=ord_api_url,
        ord_api_port=_first_value(
            _coerce_port(override_map.get("ord_api_port"), source="overrides"),
            _coerce_port(env_map.get("ORD_API_PORT"), source="ORD_API_PORT"),
            _coerce_port(containers.get("ord_api_port"), source=f"{path} containers.ord_api_port"),
        ),
        ord_rpc_port=_first_value(
            _coerce_port(override_map.get("ord_rpc_port"), source="overrides"),
            _coerce_port(env_map.get("ORD_RPC_PORT"), source="ORD_RPC_PORT"),
            _coerce_port(containers.get("ord_rpc_port"), source=f"{path} containers.ord_rpc_port"),
        ),
        node_ip=_first_value(
            override_map.get("node_ip"), env_map.get("ORD_NODE_IP"), containers.get("node_ip")
        ),
        simplified_startup=bool(
            _first_value(
                _coerce_bool(override_map.get("simplified_startup")),
                _coerce_bool(env_map.get("USE_SIMPLIFIED_STARTUP")),
                _coerce_bool(service.get("simplified_startup")),
                default=False,
            )
        ),
        umbrel_hint=bool(
            _first_value(
                _coerce_bool(override_map.get("umbrel")),
                _coerce_bool(env_map.get("UMBREL")),
                default=False,
            )
            or env_map.get("APP_ID")
        ),
        container_path=_first_value(
            override_map.get("container_path"),
            env_map.get("CONTAINER_PATH"),
            containers.get("path"),
            default=DEFAULT_CONTAINER_PATH,
        ),
        cache_dir=Path(cache_dir_raw).expanduser() if cache_dir_raw else None,
        cache_limit_bytes=_first_value(
            _coerce_int(override_map.get("cache_limit_bytes"), source="overrides"),
            _coerce_int(env_map.get("CACHE_LIMIT_BYTES"), source="CACHE_LIMIT_BYTES"),
            _coerce_int(cache.get("limit_bytes"), source=f"{path} cache.limit_bytes"),
            default=DEFAULT_CACHE_LIMIT_BYTES,
        ),
        max_upload_bytes=_first_value(
            _coerce_int(override_map.get("max_upload_bytes"), source="overrides"),
            _coerce_int(env_map.get("MAX_UPLOAD_BYTES"), source="MAX_UPLOAD_BYTES"),
            _coerce_int(service.get("max_upload_bytes"), source=f"{path} service.max_upload_bytes"),
            default=DEFAULT_MAX_UPLOAD_BYTES,
        ),
        optimize_threshold_bytes=_first_value(
            _coerce_int(override_map.get("optimize_threshold_bytes"), source="overrides"),
            _coerce_int(cache.get("optimize_threshold_bytes"), source=f"{path} cache.optimize_threshold_bytes"),
            default=DEFAULT_OPTIMIZE_THRESHOLD_BYTES,
        ),
        host=_first_value(
            override_map.get("host"), env_map.get("HOST"), service.get("host"), default="0.0.0.0"
        ),
        port=_first_value(
            _coerce_port(override_map.get("port"), source="overrides"),
            _coerce_port(env_map.get("PORT"), source="PORT"),
            _coerce_port(service.get("port"), source=f"{path} service.port"),
            default=DEFAULT_SERVICE_PORT,
        ),
        file_server_port=_first_value(
            _coerce_port(override_map.get("file_server_port"), source="overrides"),
            _coerce_port(env_map.get("FILE_SERVER_PORT"), source="FILE_SERVER_PORT"),
            _coerce_port(service.get("file_server_port"), source=f"{path} service.file_server_port"),
            default=DEFAULT_FILE_SERVER_PORT,
        ),
        strict_resolution=bool(
            _first_value(
                _coerce_bool(override_map.get("strict_resolution")),
                _coerce_bool(env_map.get("STRICT_RESOLUTION")),
                _coerce_bool(service.get("strict_resolution")),
                default=False,
            )
        ),
        geniidata_api_key=_first_value(
            override_map.get("geniidata_api_key"),
            env_map.get("GENIIDATA_API_KEY"),
            service.get("geniidata_api_key"),
        ),
    )


def load_rpc_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RPCConfig:
    """Load Bitcoin Core RPC configuration from environment variables and optional YAML."""

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    rpc_section = _section(file_config, "rpc", path)
    override_map = dict(overrides or {})

    env_port = _coerce_port(env_map.get("BTC_RPC_PORT"), source="environment")
    env_use_https = _coerce_bool(env_map.get("BTC_RPC_USE_HTTPS"))
    env_endpoint = env_map.get("BTC_RPC_URL") or env_map.get("BTC_RPC_ENDPOINT")

    endpoint_host, endpoint_port, endpoint_use_https = _parse_endpoint(
        _first_value(override_map.get("endpoint"), env_endpoint, rpc_section.get("endpoint"))
    )

    resolved_user = _first_value(override_map.get("user"), env_map.get("BTC_RPC_USER"), rpc_section.get("user"))
    resolved_password = _first_value(
        override_map.get("password"), env_map.get("BTC_RPC_PASSWORD"), rpc_section.get("password")
    )
    if not resolved_user or not resolved_password:
        raise ConfigurationError(
            "RPC credentials must be provided via BTC_RPC_* environment variables or a config file"
        )

    resolved_host = _first_value(
        override_map.get("host"), endpoint_host, env_map.get("BTC_RPC_HOST"), rpc_section.get("host"), "127.0.0.1"
    )
    resolved_port = _first_value(
        _coerce_port(override_map.get("port"), source="overrides"),
        endpoint_port,
        env_port,
        _coerce_port(rpc_section.get("port"), source=f"{path} rpc.port"),
        DEFAULT_BTC_RPC_PORT,
    )
    resolved_use_https = _first_value(
        _coerce_bool(override_map.get("use_https")),
        endpoint_use_https,
        env_use_https,
        _coerce_bool(rpc_section.get("use_https")),
        False,
    )
    resolved_wallet = _first_value(
        override_map.get("wallet"), env_map.get("BTC_RPC_WALLET"), rpc_section.get("wallet")
    )

    return RPCConfig(
        user=resolved_user,
        password=resolved_password,
        host=resolved_host,
        port=resolved_port,
        use_https=bool(resolved_use_https),
        wallet=resolved_wallet,
    )
