from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Sequence

from poom_bridge.config.models import (
    AppConfig,
    ConfigLoadRequest,
)

# Variables understood by earlier deployments of the bridge; applied after APP__ overrides.
_LEGACY_ENV_BASE_URL = "ADK_API_BASE_URL"
_LEGACY_ENV_TIMEOUT_MS = "ADK_API_TIMEOUT_MS"
_LEGACY_ENV_DEFAULT_RUN_ID = "ADK_DEFAULT_RUN_ID"

# Mappings whose keys are chosen by the user rather than by AppConfig.
_FREE_FORM_MAPPINGS = frozenset({"logging.logger_levels"})


def _read_yaml_config(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore[import-not-found]
    except ModuleNotFoundError as e:  # pragma: no cover
        raise ModuleNotFoundError(
            "Missing dependency: PyYAML is required to load the YAML config file. Install 'PyYAML'."
        ) from e

    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping, got: {type(data).__name__}")
    return data


def _load_dotenv_if_present(dotenv_path: Path) -> None:
    try:
        from dotenv import load_dotenv  # type: ignore[import-not-found]
    except ModuleNotFoundError as e:  # pragma: no cover
        raise ModuleNotFoundError(
            "Missing dependency: python-dotenv is required to load .env. Install 'python-dotenv'."
        ) from e

    if not dotenv_path.exists():
        return
    load_dotenv(dotenv_path=dotenv_path, override=False)


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any], *, path: Sequence[str] = ()) -> None:
    for key, value in overlay.items():
        dotted = ".".join([*path, str(key)])
        if key not in base:
            raise KeyError(f"Unknown configuration key path: {dotted}")
        current = base[key]
        if dotted in _FREE_FORM_MAPPINGS:
            if value is not None and not isinstance(value, dict):
                raise TypeError(f"Configuration key path expects a mapping: {dotted}")
            base[key] = dict(value or {})
        elif isinstance(current, dict):
            if value is None:
                continue
            if not isinstance(value, dict):
                raise TypeError(f"Configuration key path expects a mapping: {dotted}")
            _deep_merge(current, value, path=[*path, str(key)])
        else:
            base[key] = value


def _env_var_name_to_segments(env_var_name: str, prefix: str) -> Sequence[str]:
    remainder = env_var_name[len(prefix) :]
    parts = [p for p in remainder.split("__") if p]
    if not parts:
        raise ValueError(f"Invalid environment variable override name: {env_var_name}")
    return [p.lower() for p in parts]


def _get_parent_mapping(config: MutableMapping[str, Any], path: Sequence[str]) -> MutableMapping[str, Any]:
    cur: MutableMapping[str, Any] = config
    for segment in path[:-1]:
        if segment not in cur:
            dotted = ".".join(path)
            raise KeyError(f"Unknown configuration key path: {dotted}")
        next_value = cur[segment]
        if not isinstance(next_value, dict):
            dotted = ".".join(path)
            raise TypeError(f"Configuration key path does not point to a mapping: {dotted}")
        cur = next_value
    return cur


def _apply_env_overrides(config: MutableMapping[str, Any], env_prefix: str) -> None:
    for name, value in os.environ.items():
        if not name.startswith(env_prefix):
            continue

        segments = _env_var_name_to_segments(name, env_prefix)
        parent = _get_parent_mapping(config, segments)
        leaf = segments[-1]
        dotted = ".".join(segments)

        if leaf not in parent:
            raise KeyError(f"Unknown configuration key path: {dotted}")

        # We allow overriding any value; Pydantic will handle type coercion/validation later.
        parent[leaf] = value


def _apply_legacy_env(config: MutableMapping[str, Any]) -> None:
    upstream = config["upstream"]

    base_url = os.environ.get(_LEGACY_ENV_BASE_URL, "").strip()
    if base_url:
        upstream["base_url"] = base_url

    timeout_ms = os.environ.get(_LEGACY_ENV_TIMEOUT_MS, "").strip()
    if timeout_ms:
        try:
            upstream["timeout_seconds"] = int(timeout_ms) / 1000.0
        except ValueError as e:
            raise ValueError(f"{_LEGACY_ENV_TIMEOUT_MS} must be an integer, got: {timeout_ms}") from e

    default_run_id = os.environ.get(_LEGACY_ENV_DEFAULT_RUN_ID, "").strip()
    if default_run_id:
        upstream["default_run_id"] = default_run_id


class YamlConfigLoader:
    async def load(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        return self.load_sync(request)

    def load_sync(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        config = AppConfig().model_dump(mode="python")
        _deep_merge(config, _read_yaml_config(Path(request.yaml_path)))

        if request.dotenv_path is not None:
            _load_dotenv_if_present(Path(request.dotenv_path))

        _apply_env_overrides(config, request.env_prefix)
        _apply_legacy_env(config)
        return AppConfig.model_validate(config)
