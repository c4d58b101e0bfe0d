import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .models import TranscodeConfig

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")

# env var -> dotted config path
ENV_OVERRIDES = {
    "REDIS_HOST": "redis.host",
    "REDIS_PORT": "redis.port",
    "REDIS_DB": "redis.db",
    "REDIS_PASSWORD": "redis.password",
    "QUEUE_NAME": "queue.queue_name",
    "WORKER_ID": "worker.worker_id",
    "WEBHOOK_SECRET": "webhook.secret",
    "WEBHOOK_URL": "webhook.default_url",
    "MEDIA_BASE_PATH": "media.media_base_path",
    "MEDIA_BASE_URL": "media.media_base_url",
    "FFMPEG_PATH": "ffmpeg.binary",
    "LOG_FILE": "logging.log_file",
}


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: Dict, override: Dict) -> Dict:
    """Recursive merge of two dictionaries."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Translate recognised environment variables into a nested override dict."""
    overrides: Dict[str, Any] = {}
    for var, path in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        section, key = path.split(".")
        overrides.setdefault(section, {})[key] = value

    if environ.get("DEBUG"):
        overrides.setdefault("logging", {})["debug"] = environ["DEBUG"].lower() == "true"

    return overrides


def resolve_config(
    cli_args: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> TranscodeConfig:
    """
    Resolve config: Default < Local < Environment < CLI
    Returns validated Pydantic TranscodeConfig model.
    """
    cli_args = cli_args or {}
    environ = os.environ if environ is None else environ

    # 1. Load default YAML (or an explicit file)
    config_data = load_yaml(config_path or DEFAULT_CONFIG_PATH)

    # 2. Merge local overrides
    if config_path is None:
        config_data = merge_dicts(config_data, load_yaml(LOCAL_CONFIG_PATH))

    # 3. Merge environment
    config_data = merge_dicts(config_data, env_overrides(environ))

    # 4. Validate, then apply CLI overrides
    config = TranscodeConfig.from_dict(config_data)
    return config.merge_cli_overrides(cli_args)
