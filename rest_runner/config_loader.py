"""Config Loader - Loads client settings from YAML.

Settings files use the ClientSettings field names and may reference
environment variables as ${NAME} or ${NAME:-default}:

    timeout_ms: 30000
    proxy: http://proxy.internal:3128
    exclude_hosts_for_proxy: [localhost, "${BUILD_HOST:-build.internal}:8080"]
    host_certificates:
      api.example.com:
        cert: certs/client.crt
        key: certs/client.key
        passphrase: ${CLIENT_KEY_PASSPHRASE}
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from rest_runner.models import ClientSettings

_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


class ConfigError(Exception):
    """Raised when configuration loading fails."""


def load_settings(config_path: str | Path) -> ClientSettings:
    """Read a YAML settings file into ClientSettings.

    Raises:
        ConfigError: On a missing file, malformed YAML, a non-mapping document,
            an unset variable without a default, or invalid settings.
    """
    path = Path(config_path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if document is None:
        return ClientSettings()
    if not isinstance(document, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(document).__name__}")

    try:
        return ClientSettings.model_validate(_expand(document))
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def _expand(node: Any) -> Any:
    """Expand ${NAME} and ${NAME:-default} references throughout a YAML tree.

    Only string leaves are rewritten; mapping keys are left alone.
    """
    if isinstance(node, dict):
        return {key: _expand(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand(value) for value in node]
    if isinstance(node, str):
        return _ENV_REFERENCE.sub(_lookup, node)
    return node


def _lookup(reference: re.Match[str]) -> str:
    name, default = reference.group("name"), reference.group("default")
    if name in os.environ:
        return os.environ[name]
    if default is not None:
        return default
    raise ConfigError(f"Environment variable '{name}' is not set")
