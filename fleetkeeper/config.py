"""TOML-based cloud configuration.

Loads ~/.fleetkeeper/defaults.toml (global) and fleetkeeper.toml (project),
merges them, and resolves named clouds into CloudConfig instances.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeAlias

from fleetkeeper.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from fleetkeeper.fleet.cloud import CloudConfig
    from fleetkeeper.fleet.template import NodeTemplate

RawConfig: TypeAlias = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".fleetkeeper" / "defaults.toml"
PROJECT_CONFIG_NAME = "fleetkeeper.toml"

_CLOUD_KEYS = frozenset({"endpoint", "identity", "credential", "region", "root_url", "defaults", "templates"})
_TEMPLATE_KEYS = frozenset({"name", "labels", "options"})

_ENV_FALLBACKS = {
    "endpoint": "OS_AUTH_URL",
    "credential": "OS_PASSWORD",
    "region": "OS_REGION_NAME",
}


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("clouds", {})
    return merged


def _reject_unknown(where: str, raw: Mapping[str, Any], known: frozenset[str]) -> None:
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in {where}: {', '.join(sorted(unknown))}")


def _build_template(cloud: str, raw: RawConfig) -> NodeTemplate:
    from fleetkeeper.api.options import NodeOptions
    from fleetkeeper.fleet.template import NodeTemplate

    _reject_unknown(f"template of cloud '{cloud}'", raw, _TEMPLATE_KEYS)
    name = raw.get("name")
    if not name:
        raise ConfigurationError(f"Template of cloud '{cloud}' missing 'name' field")
    return NodeTemplate(
        name=name,
        labels=raw.get("labels", ""),
        options=NodeOptions.from_raw(raw.get("options", {})),
    )


def resolve_cloud(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> CloudConfig:
    from fleetkeeper.api.options import NodeOptions
    from fleetkeeper.fleet.cloud import CloudConfig
    from fleetkeeper.providers.openstack.session import Credentials

    config = load_config(project_dir=project_dir, global_path=global_path)
    env = os.environ if environ is None else environ

    clouds = config["clouds"]
    if name not in clouds:
        raise KeyError(f"Cloud '{name}' not found. Available: {', '.join(clouds) or 'none'}")

    raw = dict(clouds[name])
    _reject_unknown(f"cloud '{name}'", raw, _CLOUD_KEYS)

    for key, var in _ENV_FALLBACKS.items():
        if not raw.get(key) and env.get(var):
            raw[key] = env[var]

    root_url = raw.get("root_url")
    if not root_url:
        raise ConfigurationError(f"Cloud '{name}' missing 'root_url' field")

    templates = tuple(_build_template(name, t) for t in raw.get("templates", []))
    names = [t.name for t in templates]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Cloud '{name}' has duplicate template names: {names}")

    return CloudConfig(
        name=name,
        credentials=Credentials.of(
            raw.get("endpoint"), raw.get("identity"), raw.get("credential"), raw.get("region")
        ),
        root_url=root_url,
        defaults=NodeOptions.from_raw(raw.get("defaults", {})),
        templates=templates,
    )
