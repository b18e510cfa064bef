"""TOML-based configuration.

Loads ~/.kubestack/defaults.toml (global) and kubestack.toml (project),
merges them, and resolves the result into typed settings and a controller.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kubestack.controller import Controller, Defaults
from kubestack.exceptions import ConfigurationError
from kubestack.logging import LOG_LEVELS, LogConfig
from kubestack.providers.aws.config import AWS

if TYPE_CHECKING:
    from kubestack.providers.registry import ProviderRegistry
    from kubestack.userdata import UserDataRenderer

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".kubestack" / "defaults.toml"
PROJECT_CONFIG_NAME = "kubestack.toml"

_TOP_LEVEL_KEYS = frozenset({"provider", "aws", "fake", "defaults", "logging"})


@dataclass(frozen=True, slots=True)
class Settings:
    provider: str = "aws"
    aws: AWS = field(default_factory=AWS)
    fake_state_file: str | None = None
    defaults: Defaults = field(default_factory=Defaults)
    logging: LogConfig = field(default_factory=LogConfig)


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
        raise ConfigurationError(f"invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)
    return _deep_merge(global_cfg, project_cfg)


def _section[T](cls: type[T], name: str, raw: Any) -> T:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"[{name}] must be a table")
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"unknown key(s) in [{name}]: {', '.join(unknown)}. Valid: {', '.join(sorted(known))}"
        )
    defaults = cls()
    for key, value in raw.items():
        default = getattr(defaults, key)
        if default is not None and not _type_matches(value, type(default)):
            raise ConfigurationError(
                f"[{name}] {key} must be {type(default).__name__}, got {type(value).__name__}"
            )
    return cls(**raw)


def _type_matches(value: Any, expected: type) -> bool:
    if isinstance(value, bool) or expected is bool:
        return isinstance(value, bool) and expected is bool
    # Numeric settings accept both TOML integers and floats.
    if expected in (int, float):
        return isinstance(value, int | float)
    return isinstance(value, expected)


def resolve_settings(config: RawConfig) -> Settings:
    """Validate a merged raw config and build ``Settings``.

    Raises:
        ConfigurationError: Unknown keys or values of the wrong type.
    """
    unknown = sorted(set(config) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigurationError(f"unknown configuration key(s): {', '.join(unknown)}")

    provider = config.get("provider", "aws")
    if not isinstance(provider, str):
        raise ConfigurationError("provider must be a string")

    logging_cfg = _section(LogConfig, "logging", config.get("logging"))
    for key in ("level", "file_level"):
        if getattr(logging_cfg, key) not in LOG_LEVELS:
            raise ConfigurationError(
                f"[logging] {key} must be one of {', '.join(LOG_LEVELS)}, got {getattr(logging_cfg, key)!r}"
            )

    fake = config.get("fake") or {}
    if not isinstance(fake, dict) or set(fake) - {"state_file"}:
        raise ConfigurationError("[fake] only accepts state_file")

    return Settings(
        provider=provider,
        aws=_section(AWS, "aws", config.get("aws")),
        fake_state_file=fake.get("state_file"),
        defaults=_section(Defaults, "defaults", config.get("defaults")),
        logging=logging_cfg,
    )


def build_controller(
    settings: Settings,
    registry: ProviderRegistry,
    renderer: UserDataRenderer | None = None,
) -> Controller:
    """Initialise the configured provider and wrap it in a controller."""
    match settings.provider:
        case "aws":
            provider_config: Any = settings.aws
        case "fake":
            from kubestack.providers.fake import Fake

            provider_config = Fake(state_file=settings.fake_state_file)
        case _:
            provider_config = None

    provider = registry.init(settings.provider, provider_config)
    return Controller(provider, renderer=renderer, defaults=settings.defaults)
