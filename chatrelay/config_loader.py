"""Relay settings from environment variables, a .env file and an optional YAML file."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values, find_dotenv, load_dotenv

logger = logging.getLogger("chatrelay")

DEFAULT_CONFIG_PATH = "configs/config.yaml"
DEFAULT_UPSTREAM_BASE_URL = "https://api.anthropic.com"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_REQUEST_TIMEOUT = 600.0
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_ANTHROPIC_BETA = "prompt-caching-2024-07-31"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


@dataclass
class RelaySettings:
    """Resolved relay configuration."""

    upstream_base_url: str = DEFAULT_UPSTREAM_BASE_URL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    model_mapping: dict[str, str] = field(default_factory=dict)
    max_tokens_mapping: dict[str, int] = field(default_factory=dict)
    default_max_tokens: Optional[int] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    anthropic_version: str = DEFAULT_ANTHROPIC_VERSION
    anthropic_beta: Optional[str] = DEFAULT_ANTHROPIC_BETA
    log_level: str = "INFO"


def _split_pairs(mapping_str: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for pair in mapping_str.split(","):
        key, sep, value = pair.strip().partition(":")
        if not sep:
            continue
        key, value = key.strip(), value.strip()
        if key and value:
            pairs.append((key, value))
    return pairs


def parse_model_mapping(raw: Any) -> dict[str, str]:
    """Parse a model rewrite table.

    Accepts "src:dst,src2:dst2" or a mapping (from YAML).

    Example: "gpt-4:claude-opus-4-5-20251101,gpt-3.5-turbo:claude-3-5-haiku-20241022"
    """
    if isinstance(raw, Mapping):
        return {
            str(k).strip(): str(v).strip()
            for k, v in raw.items()
            if str(k).strip() and v is not None and str(v).strip()
        }
    if not isinstance(raw, str) or not raw.strip():
        return {}
    return dict(_split_pairs(raw))


def _parse_positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def parse_max_tokens_mapping(raw: Any) -> dict[str, int]:
    """Parse a per-model max_tokens table.

    Accepts "model:tokens,model2:tokens2" or a mapping (from YAML). Entries
    whose value is not a positive integer are dropped.

    Example: "claude-opus-4-5-20251101:16384,claude-3-haiku:4096"
    """
    if isinstance(raw, Mapping):
        items = [(str(k).strip(), v) for k, v in raw.items()]
    elif isinstance(raw, str):
        items = list(_split_pairs(raw))
    else:
        return {}

    mapping: dict[str, int] = {}
    for model, tokens in items:
        parsed = _parse_positive_int(tokens)
        if model and parsed is not None:
            mapping[model] = parsed
        else:
            logger.warning(f"Ignoring invalid max_tokens mapping entry: {model}:{tokens}")
    return mapping


def resolve_config_path(path: str) -> Path:
    """Resolve config path relative to project root if needed."""
    if Path(path).is_absolute():
        return Path(path)
    project_root = Path(__file__).parent.parent
    return project_root / path


def load_env_values(env_path: Path) -> dict[str, str]:
    """Load values from a .env file without mutating os.environ."""
    if not env_path.exists():
        return {}
    raw_values = dotenv_values(env_path)
    return {key: value for key, value in raw_values.items() if value is not None}


def _substitute_env_vars(obj: Any, env: Mapping[str, str]) -> Any:
    """Recursively substitute ${VAR} / $VAR references in configuration values.

    Unset variables are left as literal placeholders (and warned about).
    """
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env) for item in obj]
    if isinstance(obj, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            value = env.get(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"The literal placeholder will be used."
                )
                return match.group(0)
            return value

        return _ENV_PATTERN.sub(replace_var, obj)
    return obj


def load_config_file(path: Path, environ: Mapping[str, str]) -> dict[str, Any]:
    """Load the ``relay_settings`` section of a YAML config file.

    A missing file yields an empty dict. Values from a sibling ``.env`` file
    are used for substitution before the process environment.
    """
    if not path.exists():
        logger.debug(f"No config file at {path}, using environment only")
        return {}

    logger.info(f"Loading configuration from {path}")
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise RuntimeError(f"Config file {path} must contain a mapping")

    env = {**environ, **load_env_values(path.with_name(".env"))}
    section = _substitute_env_vars(data.get("relay_settings") or {}, env)
    if not isinstance(section, dict):
        raise RuntimeError(f"relay_settings in {path} must be a mapping")
    return section


def load_settings(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RelaySettings:
    """Build ``RelaySettings`` from defaults, the YAML file and the environment.

    Args:
        path: YAML config path. Defaults to $CHATRELAY_CONFIG, then
              configs/config.yaml in the project root.
        environ: Environment to read. Defaults to os.environ, after loading
              a .env file from the working directory (without overriding
              variables that are already set).

    Returns:
        The resolved settings; environment variables win over the file.
    """
    if environ is None:
        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path, override=False)
        environ = os.environ

    config_path = resolve_config_path(
        path or environ.get("CHATRELAY_CONFIG") or DEFAULT_CONFIG_PATH
    )
    file_cfg = load_config_file(config_path, environ)
    server_cfg = file_cfg.get("server") or {}

    settings = RelaySettings()

    base_url = environ.get("ANTHROPIC_BASE_URL") or file_cfg.get("upstream_base_url")
    if base_url:
        settings.upstream_base_url = str(base_url).strip().rstrip("/")

    host = environ.get("HOST") or server_cfg.get("host")
    if host:
        settings.host = str(host)

    port_raw = environ.get("PORT") or server_cfg.get("port")
    if port_raw is not None:
        port = _parse_positive_int(port_raw)
        if port is None:
            logger.warning(f"Invalid port {port_raw!r}, using {DEFAULT_PORT}")
        else:
            settings.port = port

    settings.model_mapping = parse_model_mapping(
        environ.get("MODEL_MAPPING") or file_cfg.get("model_mapping")
    )
    settings.max_tokens_mapping = parse_max_tokens_mapping(
        environ.get("MAX_TOKENS_MAPPING") or file_cfg.get("max_tokens_mapping")
    )

    max_tokens_raw = environ.get("MAX_TOKENS") or file_cfg.get("max_tokens")
    if max_tokens_raw:
        settings.default_max_tokens = _parse_positive_int(max_tokens_raw)

    timeout_raw = environ.get("REQUEST_TIMEOUT") or file_cfg.get("request_timeout")
    if timeout_raw:
        try:
            settings.request_timeout = float(timeout_raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid request timeout {timeout_raw!r}, using default")

    version = environ.get("ANTHROPIC_VERSION") or file_cfg.get("anthropic_version")
    if version:
        settings.anthropic_version = str(version)

    if "ANTHROPIC_BETA" in environ:
        settings.anthropic_beta = environ["ANTHROPIC_BETA"] or None
    elif "anthropic_beta" in file_cfg:
        beta = file_cfg.get("anthropic_beta")
        settings.anthropic_beta = str(beta) if beta else None

    log_level = environ.get("LOG_LEVEL") or file_cfg.get("log_level")
    if log_level:
        settings.log_level = str(log_level).upper()

    return settings
