"""
Runtime configuration and provider-config resolution.

Layers, lowest precedence first:
  built-in defaults < first existing YAML file < CSYNC_* environment < CLI

Environment keys nest with a double underscore:
  CSYNC_HTTP__VERIFY_TLS=false              -> http.verify_tls
  CSYNC_PROVIDER_CONFIGS__PROD__TENANT_ID=a -> provider_configs.prod.tenant_id

String values may reference the environment as ${VAR} or ${VAR:-fallback}.
A `.env` file found from the working directory is loaded first and never
overrides variables that are already set.

Example file:

    http:
      timeout_sec: 10
    provider_configs:
      default:
        address: http://cortex:9009
        tenant_id: team-a
        credentials:
          source: Environment      # None | Environment | Filesystem
          env: CORTEX_CREDENTIALS  # JSON: {"username": ..., "password": ...} or {"token": ...}
"""

from __future__ import annotations

import dataclasses
import json
import os
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type, TypeVar

import yaml
from dotenv import find_dotenv, load_dotenv

from .cortex_client import ConnectionParams
from .errors import ConfigError

# Credentials JSON keys, as stored in provider credential secrets
CREDENTIALS_KEY_USERNAME = "username"
CREDENTIALS_KEY_PASSWORD = "password"
CREDENTIALS_KEY_TOKEN = "token"

CREDENTIAL_SOURCES = ("None", "Environment", "Filesystem")

ENV_PREFIX = "CSYNC_"

CONFIG_FILES: Tuple[str, ...] = (
    "./cortexsync.yml",
    os.path.expanduser("~/.config/cortexsync/config.yml"),
    "/etc/cortexsync/config.yml",
)


@dataclass
class AppSection:
    run_id: str = ""
    poll_interval_sec: float = 60.0

    def __post_init__(self) -> None:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]


@dataclass
class HttpSection:
    verify_tls: bool = True
    timeout_sec: float = 30.0
    retries: int = 2


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


@dataclass
class CredentialsSection:
    source: str = "None"
    env: str = ""
    path: str = ""


@dataclass
class ProviderConfig:
    """Where a managed object's Cortex tenant lives and how to authenticate to it."""
    name: str
    address: str
    tenant_id: str = ""
    credentials: CredentialsSection = field(default_factory=CredentialsSection)


@dataclass
class AppConfig:
    app: AppSection = field(default_factory=AppSection)
    http: HttpSection = field(default_factory=HttpSection)
    logging: LoggingSection = field(default_factory=LoggingSection)
    provider_configs: Dict[str, ProviderConfig] = field(default_factory=dict)

    @property
    def run_id(self) -> str:
        return self.app.run_id


# ---------- Layers ----------

def _merge(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Merge mappings left to right; nested mappings merge, anything else is replaced."""
    out: Dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            if isinstance(value, Mapping) and isinstance(out.get(key), dict):
                out[key] = _merge(out[key], value)
            elif isinstance(value, Mapping):
                out[key] = _merge(value)
            else:
                out[key] = value
    return out


def _file_layer(files: Tuple[str, ...]) -> Dict[str, Any]:
    path = next((p for p in files if os.path.isfile(p)), None)
    if path is None:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_layer(prefix: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix) or len(key) == len(prefix):
            continue
        *parents, leaf = key[len(prefix):].lower().split("__")
        node = out
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return out


_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand(obj: Any) -> Any:
    if isinstance(obj, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), obj)
    if isinstance(obj, dict):
        return {k: _expand(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand(v) for v in obj]
    return obj


# ---------- Typed sections ----------

def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


_COERCE: Dict[str, Callable[[Any], Any]] = {
    "bool": _as_bool,
    "int": int,
    "float": float,
    "str": str,
}

S = TypeVar("S")


def _section(cls: Type[S], raw: Any, where: str) -> S:
    """Build dataclass *cls* from *raw*, coercing scalars to the declared field types."""
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{where} must be a mapping")
    known = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigError(f"Unknown configuration key: {where}.{unknown[0]}")

    kwargs: Dict[str, Any] = {}
    for name, value in raw.items():
        if value is None:
            continue
        coerce = _COERCE.get(str(known[name].type))
        if coerce is not None:
            try:
                value = coerce(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{where}.{name}: {exc}") from exc
        kwargs[name] = value
    return cls(**kwargs)


def _provider_configs(raw: Any) -> Dict[str, ProviderConfig]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError("provider_configs must be a mapping of name -> settings")
    out: Dict[str, ProviderConfig] = {}
    for name, block in raw.items():
        where = f"provider_configs.{name}"
        if not isinstance(block, Mapping):
            raise ConfigError(f"{where} must be a mapping")
        block = dict(block)
        creds = _section(CredentialsSection, block.pop("credentials", None), f"{where}.credentials")
        if creds.source not in CREDENTIAL_SOURCES:
            raise ConfigError(f"{where}.credentials.source must be one of {', '.join(CREDENTIAL_SOURCES)}")
        if not block.get("address"):
            raise ConfigError(f"{where}.address is required")
        pc = _section(ProviderConfig, {"name": str(name), **block}, where)
        pc.credentials = creds
        out[str(name)] = pc
    return out


def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = CONFIG_FILES,
    env_prefix: str = ENV_PREFIX,
    dotenv: bool = True,
) -> AppConfig:
    """Resolve the layered configuration into an AppConfig. Raises ConfigError."""
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True) or "", override=False)

    merged = _expand(_merge(_file_layer(files), _env_layer(env_prefix), cli_overrides))
    return AppConfig(
        app=_section(AppSection, merged.get("app"), "app"),
        http=_section(HttpSection, merged.get("http"), "http"),
        logging=_section(LoggingSection, merged.get("logging"), "logging"),
        provider_configs=_provider_configs(merged.get("provider_configs")),
    )


# ---------- Provider configs ----------

def _credentials_blob(pc: ProviderConfig) -> Optional[str]:
    creds = pc.credentials
    if creds.source == "None":
        return None
    if creds.source == "Environment":
        if not creds.env:
            raise ConfigError(f"provider config '{pc.name}': credentials.env is required for source Environment")
        if creds.env not in os.environ:
            raise ConfigError(f"provider config '{pc.name}': environment variable {creds.env} is not set")
        return os.environ[creds.env]
    try:
        with open(creds.path, "r", encoding="utf-8") as fh:
            return fh.read()
    except OSError as exc:
        raise ConfigError(f"provider config '{pc.name}': cannot get credentials: {exc}") from exc


def _read_credentials(pc: ProviderConfig) -> Dict[str, str]:
    blob = _credentials_blob(pc)
    if blob is None:
        return {}
    try:
        data = json.loads(blob)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"provider config '{pc.name}': cannot unmarshal the data in credentials: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"provider config '{pc.name}': credentials must be a JSON object")
    return {str(k): str(v) for k, v in data.items()}


def resolve_connection(cfg: AppConfig, ref: str) -> ConnectionParams:
    """Resolve a providerConfigRef name into connection parameters for the Cortex client."""
    pc = cfg.provider_configs.get(ref)
    if pc is None:
        raise ConfigError(f"cannot get referenced provider config '{ref}'")
    creds = _read_credentials(pc)
    return ConnectionParams(
        address=pc.address,
        tenant_id=pc.tenant_id,
        user=creds.get(CREDENTIALS_KEY_USERNAME, ""),
        key=creds.get(CREDENTIALS_KEY_PASSWORD, ""),
        token=creds.get(CREDENTIALS_KEY_TOKEN, ""),
    )
