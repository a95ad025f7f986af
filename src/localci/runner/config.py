#!/usr/bin/env python3
"""
Runner configuration with multi-layer merging.

Layers (low to high priority):
1. Built-in defaults (the Config dataclass defaults)
2. User file (--config-file, YAML or JSON)
3. User CLI options
"""

import json
import os
from copy import deepcopy
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

from localci.core.errors import ConfigurationError


@dataclass
class Config:
    """Options that drive a job run. Read-only once a job has started."""

    workdir: str = "."
    bind_workdir: bool = False
    actor: str = ""
    event_name: str = "push"
    event_path: str = ""
    default_branch: str = ""
    reuse_containers: bool = False
    force_pull: bool = False
    pull: bool = True
    force_remote_checkout: bool = False
    log_output: bool = False
    env: Dict[str, str] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict)
    platforms: Dict[str, str] = field(default_factory=dict)
    privileged: bool = False
    userns_mode: str = ""
    container_architecture: str = ""
    container_daemon_socket: str = ""
    container_cap_add: List[str] = field(default_factory=list)
    container_cap_drop: List[str] = field(default_factory=list)
    use_gitignore: bool = True
    github_instance: str = "github.com"
    github_server_url: str = ""
    github_api_server_url: str = ""
    github_graphql_api_server_url: str = ""
    auto_remove: bool = False
    artifact_server_path: str = ""
    artifact_server_port: str = "34567"
    action_cache_dir: str = ""
    allocate_terminal: bool = False
    dryrun: bool = False

    def __post_init__(self) -> None:
        self.platforms = {k.lower(): v for k, v in self.platforms.items()}
        self.workdir = os.path.abspath(self.workdir)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a Config, accepting dashed or underscored keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = key.replace("-", "_")
            if name not in known:
                raise ConfigurationError(
                    f"Unknown configuration key: {key}",
                    suggestions=[f"Valid keys: {', '.join(sorted(known))}"],
                )
            kwargs[name] = value
        return cls(**kwargs)


class ConfigLoader:
    """Loads and merges configuration layers into a Config."""

    @classmethod
    def deep_merge(cls, base: Dict, override: Dict) -> Dict:
        """
        Deep merge two dictionaries. Override wins conflicts.
        Nested dicts are merged, lists/primitives are replaced.
        """
        result = deepcopy(base)
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls.deep_merge(result[key], value)
            else:
                result[key] = deepcopy(value)
        return result

    @classmethod
    def load_file(cls, path: str) -> Dict[str, Any]:
        """
        Load a YAML or JSON configuration file.

        Raises:
            ConfigurationError: If the file is missing or not a mapping.
        """
        if not os.path.isfile(path):
            raise ConfigurationError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                if path.endswith(".json"):
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
            except (json.JSONDecodeError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Could not parse config file {path}: {e}", cause=e)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    @classmethod
    def load_config(
        cls,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Config:
        """Merge file and CLI layers over the defaults."""
        merged: Dict[str, Any] = {}
        if config_file:
            merged = cls.deep_merge(merged, cls.load_file(config_file))
        if overrides:
            # CLI options left unset must not mask file values
            merged = cls.deep_merge(merged, {k: v for k, v in overrides.items() if v is not None})
        return Config.from_dict(merged)


def parse_key_values(pairs: Optional[List[str]], option: str = "") -> Dict[str, str]:
    """Parse ``KEY=VALUE`` CLI pairs into a dict.

    A bare ``KEY`` takes its value from the host environment.
    """
    result: Dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not key:
            raise ConfigurationError(f"Invalid {option or 'key=value'} entry: {pair!r}")
        result[key] = value if sep else os.environ.get(key, "")
    return result
