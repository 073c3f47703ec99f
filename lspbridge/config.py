"""
Configuration for the bridge.

Options can be built directly or loaded from a YAML file:

    root_uri: file:///home/me/project
    timeout: 5
    server_command: [pyright-langserver, --stdio]
    features:
      hover_enabled: true
      signature_activate_on_typing: true
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from lsprotocol.types import WorkspaceFolder

from lspbridge.lsp.errors import LanguageServerError


class ConfigError(LanguageServerError):
    """The configuration file could not be used."""


@dataclass
class FeatureOptions:
    """Per-feature switches; every feature is on except signature help while typing."""

    diagnostics_enabled: bool = True
    hover_enabled: bool = True
    completion_enabled: bool = True
    definition_enabled: bool = True
    rename_enabled: bool = True
    code_actions_enabled: bool = True
    signature_help_enabled: bool = True
    signature_activate_on_typing: bool = False


@dataclass
class ClientOptions:
    root_uri: str | None = None
    workspace_folders: list[WorkspaceFolder] | None = None
    timeout: float = 10.0
    initialization_options: Any = None
    auto_close: bool = False
    server_command: list[str] = field(default_factory=list)
    features: FeatureOptions = field(default_factory=FeatureOptions)


def _check_keys(data: dict, cls: type, section: str) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown {section} option(s): {', '.join(unknown)}")


def options_from_dict(data: dict[str, Any]) -> ClientOptions:
    """Build ClientOptions from parsed YAML data, rejecting unknown keys."""
    _check_keys(data, ClientOptions, "client")
    data = dict(data)

    features = data.pop("features", None) or {}
    if not isinstance(features, dict):
        raise ConfigError("'features' must be a mapping")
    _check_keys(features, FeatureOptions, "feature")

    folders = data.pop("workspace_folders", None)
    if folders is not None:
        try:
            data["workspace_folders"] = [
                WorkspaceFolder(uri=folder["uri"], name=folder.get("name", folder["uri"]))
                for folder in folders
            ]
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Invalid workspace_folders entry: {e}") from e

    command = data.get("server_command")
    if isinstance(command, str):
        data["server_command"] = command.split()

    if "timeout" in data:
        try:
            data["timeout"] = float(data["timeout"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid timeout: {data['timeout']!r}") from e

    return ClientOptions(features=FeatureOptions(**features), **data)


def load_config(path: str | Path) -> ClientOptions:
    """
    Load ClientOptions from a YAML file.

    Raises:
        ConfigError: If the file cannot be read or parsed, or holds unknown keys.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return ClientOptions()
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a mapping")

    return options_from_dict(data)
