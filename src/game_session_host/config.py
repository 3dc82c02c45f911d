import dataclasses
import json
import os
import shlex
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

CONFIG_FILENAME = "game-host.yml"
ENV_PREFIX = "GAME_HOST_"
# Host ids starting with this were never backed by a container.
STUB_HOST_PREFIX = "local-"

DEFAULT_CONFIG: Dict[str, Any] = {
    "control_plane": {
        "base_url": None,
        "path": "/host",
        "api_key": None,
        "api_key_header": "x-api-key",
        "timeout_seconds": 15,
    },
    "local": {
        # Shells out to a container runtime; only enable where one exists.
        "enabled": False,
        "runtime": "docker",
        "image": "game-server:latest",
        "container_name": None,
        "container_prefix": "game-server",
        "scene": "HostUI",
        "relay_region": "us-central",
        "max_connections": 20,
        "user_api_base": None,
        "insecure_tls": False,
        "game_api_key": None,
        "port_host": None,
        "port_container": "8080",
        "env_port": None,
        "cpus": None,
        "cpuset": None,
        "memory": None,
        "cpu_shares": None,
        "log_timeout_ms": 20_000,
        "extra_env": {},
        "extra_args": [],
    },
    "ws_url": None,
    # Public user-API URL; containers use it when local.user_api_base is unset.
    "user_api_url": None,
    "server": {
        "host": "127.0.0.1",
        "port": 4180,
    },
    "log": {
        "path": ".game-session-host/host.log",
        "max_bytes": 10_000_000,
        "backup_count": 3,
        "level": "INFO",
    },
}

# env suffix -> (section, key, kind); section None means top level.
_ENV_OVERRIDES: Tuple[Tuple[str, Optional[str], str, str], ...] = (
    ("CONTROL_PLANE_URL", "control_plane", "base_url", "str"),
    ("CONTROL_PLANE_PATH", "control_plane", "path", "str"),
    ("CONTROL_PLANE_API_KEY", "control_plane", "api_key", "str"),
    ("CONTROL_PLANE_API_KEY_HEADER", "control_plane", "api_key_header", "str"),
    ("CONTROL_PLANE_TIMEOUT", "control_plane", "timeout_seconds", "float"),
    ("LOCAL_ENABLED", "local", "enabled", "bool"),
    ("RUNTIME", "local", "runtime", "str"),
    ("IMAGE", "local", "image", "str"),
    ("CONTAINER_NAME", "local", "container_name", "str"),
    ("CONTAINER_PREFIX", "local", "container_prefix", "str"),
    ("SCENE", "local", "scene", "str"),
    ("RELAY_REGION", "local", "relay_region", "str"),
    ("MAX_CONNECTIONS", "local", "max_connections", "int"),
    ("USER_API_BASE", "local", "user_api_base", "str"),
    ("INSECURE_TLS", "local", "insecure_tls", "bool"),
    ("GAME_API_KEY", "local", "game_api_key", "str"),
    ("PORT_HOST", "local", "port_host", "str"),
    ("PORT_CONTAINER", "local", "port_container", "str"),
    ("ENV_PORT", "local", "env_port", "str"),
    ("CPUS", "local", "cpus", "str"),
    ("CPUSET", "local", "cpuset", "str"),
    ("MEMORY", "local", "memory", "str"),
    ("CPU_SHARES", "local", "cpu_shares", "str"),
    ("LOG_TIMEOUT_MS", "local", "log_timeout_ms", "int"),
    ("EXTRA_ENVS", "local", "extra_env", "env_pairs"),
    ("EXTRA_ARGS", "local", "extra_args", "args"),
    ("WS_URL", None, "ws_url", "str"),
    ("USER_API_URL", None, "user_api_url", "str"),
    ("SERVER_HOST", "server", "host", "str"),
    ("SERVER_PORT", "server", "port", "int"),
    ("LOG_PATH", "log", "path", "str"),
    ("LOG_LEVEL", "log", "level", "str"),
)


class ConfigError(Exception):
    """Raised when configuration is invalid."""


@dataclasses.dataclass(frozen=True)
class LogConfig:
    path: Path
    max_bytes: int
    backup_count: int
    level: str = "INFO"


@dataclasses.dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int


@dataclasses.dataclass(frozen=True)
class ControlPlaneConfig:
    base_url: Optional[str]
    path: str
    api_key: Optional[str]
    api_key_header: str
    timeout_seconds: float

    @property
    def configured(self) -> bool:
        return bool(self.base_url)


@dataclasses.dataclass(frozen=True)
class LocalRuntimeConfig:
    enabled: bool
    runtime: str
    image: str
    container_name: Optional[str]
    container_prefix: str
    scene: str
    relay_region: str
    max_connections: int
    user_api_base: Optional[str]
    insecure_tls: bool
    game_api_key: Optional[str]
    port_host: Optional[str]
    port_container: str
    env_port: Optional[str]
    cpus: Optional[str]
    cpuset: Optional[str]
    memory: Optional[str]
    cpu_shares: Optional[str]
    log_timeout_ms: int
    extra_env: Tuple[Tuple[str, str], ...]
    extra_args: Tuple[str, ...]


@dataclasses.dataclass(frozen=True)
class HostConfig:
    control_plane: ControlPlaneConfig
    local: LocalRuntimeConfig
    server: ServerConfig
    log: LogConfig
    ws_url: Optional[str] = None
    user_api_url: Optional[str] = None

    @classmethod
    def from_raw(
        cls,
        raw: Optional[Mapping[str, Any]] = None,
        env: Optional[Mapping[str, str]] = None,
        *,
        root: Optional[Path] = None,
    ) -> "HostConfig":
        """
        Build a HostConfig from a config.yml-shaped mapping plus GAME_HOST_*
        overrides. Pass ``env={}`` to ignore the process environment.
        """
        env = os.environ if env is None else env
        overrides = dict(raw) if isinstance(raw, Mapping) else {}
        merged = _merge_defaults(DEFAULT_CONFIG, overrides)
        _apply_env_overrides(merged, env)
        _validate_config(merged)
        return _build_config(merged, root or Path.cwd())


def _merge_defaults(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(base))
    for key, value in overrides.items():
        if isinstance(value, Mapping) and key in merged and isinstance(merged[key], dict):
            if key in ("extra_env",):
                merged[key] = dict(value)
            else:
                merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(raw: Optional[str], default: Any) -> Any:
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return default


def _env_float(raw: Optional[str], default: Any) -> Any:
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except (TypeError, ValueError):
        return default


def parse_env_pairs(raw: str) -> Dict[str, str]:
    """Parse ``KEY=VAL,KEY2=VAL2``; entries without ``=`` are dropped."""
    pairs: Dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item or "=" not in item:
            continue
        key, value = item.split("=", 1)
        key = key.strip()
        if key:
            pairs[key] = value
    return pairs


def parse_extra_args(raw: str) -> list[str]:
    try:
        return [token for token in shlex.split(raw) if token]
    except ValueError as exc:
        raise ConfigError(f"Invalid extra args {raw!r}: {exc}") from exc


def _apply_env_overrides(cfg: Dict[str, Any], env: Mapping[str, str]) -> None:
    for suffix, section, key, kind in _ENV_OVERRIDES:
        raw = env.get(f"{ENV_PREFIX}{suffix}")
        if raw is None:
            continue
        target = cfg if section is None else cfg[section]
        current = target.get(key)
        if kind == "bool":
            target[key] = _env_bool(raw, bool(current))
        elif kind == "int":
            target[key] = _env_int(raw, current)
        elif kind == "float":
            target[key] = _env_float(raw, current)
        elif kind == "env_pairs":
            target[key] = parse_env_pairs(raw)
        elif kind == "args":
            target[key] = parse_extra_args(raw)
        else:
            target[key] = raw.strip() or None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_extra_env(value: Any) -> Tuple[Tuple[str, str], ...]:
    if isinstance(value, Mapping):
        return tuple((str(k), "" if v is None else str(v)) for k, v in value.items())
    if isinstance(value, str):
        return tuple(parse_env_pairs(value).items())
    pairs: list[Tuple[str, str]] = []
    for item in value or []:
        key, _, val = str(item).partition("=")
        if key.strip():
            pairs.append((key.strip(), val))
    return tuple(pairs)


def _normalize_extra_args(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return tuple(parse_extra_args(value))
    return tuple(str(token) for token in value or [] if str(token).strip())


def _validate_config(cfg: Dict[str, Any]) -> None:
    for section in ("control_plane", "local", "server", "log"):
        if not isinstance(cfg.get(section), dict):
            raise ConfigError(f"{section} section must be a mapping")
    control_plane = cfg["control_plane"]
    base_url = control_plane.get("base_url")
    if base_url is not None and not isinstance(base_url, str):
        raise ConfigError("control_plane.base_url must be a string or null")
    if not isinstance(control_plane.get("path"), str):
        raise ConfigError("control_plane.path must be a string")
    if not isinstance(control_plane.get("timeout_seconds"), (int, float)):
        raise ConfigError("control_plane.timeout_seconds must be a number")
    local = cfg["local"]
    if not isinstance(local.get("enabled"), bool):
        raise ConfigError("local.enabled must be boolean")
    if not isinstance(local.get("insecure_tls"), bool):
        raise ConfigError("local.insecure_tls must be boolean")
    for key in ("runtime", "image", "container_prefix"):
        if not isinstance(local.get(key), str) or not local[key].strip():
            raise ConfigError(f"local.{key} must be a non-empty string")
    for key in ("container_prefix", "container_name"):
        value = local.get(key)
        if isinstance(value, str) and value.strip().startswith(STUB_HOST_PREFIX):
            raise ConfigError(
                f"local.{key} must not start with {STUB_HOST_PREFIX!r}; "
                "teardown treats those host ids as stubs"
            )
    for key in ("max_connections", "log_timeout_ms"):
        value = local.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigError(f"local.{key} must be a positive integer")
    if not isinstance(local.get("extra_env"), (dict, list, str)):
        raise ConfigError("local.extra_env must be a mapping or a list of KEY=VAL")
    if not isinstance(local.get("extra_args"), (list, str)):
        raise ConfigError("local.extra_args must be a list or a string")
    server = cfg["server"]
    if not isinstance(server.get("host"), str):
        raise ConfigError("server.host must be a string")
    if not isinstance(server.get("port"), int):
        raise ConfigError("server.port must be an integer")
    log_cfg = cfg["log"]
    if not isinstance(log_cfg.get("path"), str):
        raise ConfigError("log.path must be a string path")
    for key in ("max_bytes", "backup_count"):
        if not isinstance(log_cfg.get(key), int):
            raise ConfigError(f"log.{key} must be an integer")


def _build_config(cfg: Dict[str, Any], root: Path) -> HostConfig:
    control_plane = cfg["control_plane"]
    local = cfg["local"]
    log_cfg = cfg["log"]
    return HostConfig(
        control_plane=ControlPlaneConfig(
            base_url=_optional_str(control_plane.get("base_url")),
            path=str(control_plane["path"]),
            api_key=_optional_str(control_plane.get("api_key")),
            api_key_header=str(control_plane.get("api_key_header") or "x-api-key"),
            timeout_seconds=float(control_plane["timeout_seconds"]),
        ),
        local=LocalRuntimeConfig(
            enabled=local["enabled"],
            runtime=local["runtime"].strip(),
            image=local["image"].strip(),
            container_name=_optional_str(local.get("container_name")),
            container_prefix=local["container_prefix"].strip(),
            scene=str(local.get("scene") or ""),
            relay_region=str(local.get("relay_region") or ""),
            max_connections=local["max_connections"],
            user_api_base=_optional_str(local.get("user_api_base")),
            insecure_tls=local["insecure_tls"],
            game_api_key=_optional_str(local.get("game_api_key")),
            port_host=_optional_str(local.get("port_host")),
            port_container=_optional_str(local.get("port_container")) or "8080",
            env_port=_optional_str(local.get("env_port")),
            cpus=_optional_str(local.get("cpus")),
            cpuset=_optional_str(local.get("cpuset")),
            memory=_optional_str(local.get("memory")),
            cpu_shares=_optional_str(local.get("cpu_shares")),
            log_timeout_ms=local["log_timeout_ms"],
            extra_env=_normalize_extra_env(local.get("extra_env")),
            extra_args=_normalize_extra_args(local.get("extra_args")),
        ),
        server=ServerConfig(
            host=cfg["server"]["host"],
            port=cfg["server"]["port"],
        ),
        log=LogConfig(
            path=root / log_cfg["path"],
            max_bytes=log_cfg["max_bytes"],
            backup_count=log_cfg["backup_count"],
            level=str(log_cfg.get("level") or "INFO"),
        ),
        ws_url=_optional_str(cfg.get("ws_url")),
        user_api_url=_optional_str(cfg.get("user_api_url")),
    )


def find_config_path(start: Path) -> Optional[Path]:
    """Return the closest game-host.yml walking upward from start."""
    start = start.resolve()
    search_dir = start if start.is_dir() else start.parent
    for current in [search_dir] + list(search_dir.parents):
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


def _load_dotenv_for_root(root: Path) -> None:
    """
    Best-effort load of .env next to the config so installed entrypoints
    behave the same regardless of CWD.
    """
    candidate = root / ".env"
    try:
        if candidate.exists():
            load_dotenv(dotenv_path=candidate, override=False)
    except OSError:
        pass


def load_config(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> HostConfig:
    """
    Load configuration from an explicit YAML file, or the nearest
    game-host.yml above CWD, then apply GAME_HOST_* environment overrides.
    A missing file is fine: defaults plus environment are a complete config.
    """
    if path is not None:
        config_path: Optional[Path] = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
    else:
        config_path = find_config_path(Path.cwd())
    root = config_path.parent.resolve() if config_path else Path.cwd()
    if env is None:
        _load_dotenv_for_root(root)
    data: Dict[str, Any] = {}
    if config_path is not None:
        try:
            with config_path.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        data = loaded
    return HostConfig.from_raw(data, env, root=root)


__all__ = [
    "CONFIG_FILENAME",
    "ConfigError",
    "ControlPlaneConfig",
    "DEFAULT_CONFIG",
    "HostConfig",
    "LocalRuntimeConfig",
    "LogConfig",
    "ServerConfig",
    "find_config_path",
    "load_config",
    "parse_env_pairs",
    "parse_extra_args",
]
