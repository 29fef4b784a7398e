import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from owlbridge.utils.diagnostics import BridgeConfigurationError

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]+))?\}")

DEFAULT_CONFIG_NAME = "owlbridge.yaml"

def interpolate_env_vars(content: str) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variables."""
    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, content)

def load_config(path: Path) -> Dict[str, Any]:
    """
    Load the host build config with environment variable interpolation.

    Only the 'resolver' section is kept; everything else belongs to the host.
    A missing file yields an empty config, an unreadable one is an error.
    """
    if not path.exists():
        return {}

    try:
        content = path.read_text(encoding="utf-8")
        interpolated_content = interpolate_env_vars(content)
        full_config = yaml.safe_load(interpolated_content) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise BridgeConfigurationError(f"Unable to read host config {path}: {exc}") from exc

    if not isinstance(full_config, dict):
        raise BridgeConfigurationError(f"Host config {path} must be a mapping at the top level.")

    allowed_keys = {"resolver"}
    filtered_config = {k: v for k, v in full_config.items() if k in allowed_keys}

    return filtered_config

def ruby_options_section(config: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the `resolver.ruby_options` mapping, or None when the bridge is not configured."""
    resolver = config.get("resolver")
    if not isinstance(resolver, dict) or "ruby_options" not in resolver:
        return None

    section = resolver["ruby_options"]
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise BridgeConfigurationError("`resolver.ruby_options` must be a mapping of option names to values.")
    return section
