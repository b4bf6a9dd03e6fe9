# repair_planner/utils/utilities.py
import os
from urllib.parse import quote_plus
from typing import Any

import yaml

from repair_planner.definitions import CONFIG_DIR

DEFAULT_CONFIG = f'{CONFIG_DIR}/store_config.yaml'


def load_yaml(config_file: str) -> dict:
    """
    Read a YAML file; a missing or malformed file yields an empty dict.
    """
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (FileNotFoundError, yaml.YAMLError):
        return {}


def config_param(config_file=DEFAULT_CONFIG, field=None):
    """Configures the script using a config file

    Args:
        field: top-level key to return
        config_file: the path of the config file, relative or absolute

    """
    configs = load_yaml(config_file)
    if field is None:
        return configs
    return configs.get(field)


def get_profile(cfg: dict, name: str | None = None) -> tuple[str, dict]:
    profiles = cfg.get("profiles", {})
    if not profiles:
        raise KeyError("missing profiles")
    if name is None:
        name = cfg.get("default_profile")
        if not name:
            raise KeyError("missing default_profile")
    try:
        return name, profiles[name]
    except KeyError:
        raise KeyError(f"profile '{name}' not found; have {list(profiles)}")


def resolve_auth(profile: dict) -> dict | None:
    """
    Resolve credentials named by a profile's auth block.
    Profiles without an auth block (local SQLite) need none.
    """
    auth = profile.get("auth")
    if not auth:
        return None
    user = auth.get("user") or os.environ.get(auth.get("user_env", ""))
    pwd = auth.get("pwd") or os.environ.get(auth.get("pwd_env", ""))
    if not user or not pwd:
        raise RuntimeError("Missing credentials: check user_env/pwd_env and .env")
    return {"user": user, "pwd": pwd}


def store_url(profile: dict) -> str:
    """
    Build the SQLAlchemy URL for a store profile: ${ENV} references are expanded
    and {user}/{pwd} placeholders filled from the resolved auth block.
    """
    url = os.path.expandvars(str(profile.get("url", "")))
    if not url:
        raise KeyError("store profile has no url")
    auth = resolve_auth(profile)
    if auth:
        url = url.format(user=quote_plus(auth["user"]), pwd=quote_plus(auth["pwd"]))
    return url


def section(cfg: dict | None, *keys: str) -> dict[str, Any]:
    """Walk nested config mappings, treating missing or null levels as empty."""
    node: Any = cfg or {}
    for key in keys:
        node = (node.get(key) if isinstance(node, dict) else None) or {}
    return node if isinstance(node, dict) else {}
