"""TOML configuration loading for binsync."""

from __future__ import annotations

import os
import re
import tempfile
import tomllib
from pathlib import Path
from typing import Any, Iterable, Mapping

import tomli_w
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

DEFAULT_CONFIG_FILENAME = "binsync.toml"
DEFAULT_SOURCES_FILENAME = "sources.toml"
DEFAULT_PATTERN = r".*\.jar$"
APP_DIRNAME = "binsync"


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


def user_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / APP_DIRNAME


def user_data_dir() -> Path:
    base = os.environ.get("XDG_DATA_HOME")
    root = Path(base) if base else Path.home() / ".local" / "share"
    return root / APP_DIRNAME


def scratch_dir() -> Path:
    """A location that is writable even when the user directories are not."""

    return Path(tempfile.gettempdir()) / APP_DIRNAME


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments."""

    text = str(raw)
    expanded = Path(os.path.expandvars(text)).expanduser()
    if expanded.is_absolute():
        return expanded.resolve(strict=False)
    return (base_dir / expanded).resolve(strict=False)


class ArtifactSource(BaseModel):
    """A remote repository plus the pattern selecting its artifacts."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: str
    pattern: str = DEFAULT_PATTERN

    @field_validator("name", "address")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("pattern")
    @classmethod
    def _valid_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regular expression: {exc}") from exc
        return value

    def compiled(self) -> re.Pattern[str]:
        return re.compile(self.pattern, re.IGNORECASE)

    def matches(self, relative_path: str) -> bool:
        return self.compiled().search(relative_path) is not None


DEFAULT_SOURCES: tuple[ArtifactSource, ...] = (
    ArtifactSource(name="JustDavyy", address="https://github.com/JustDavyy/osmb-scripts.git"),
    ArtifactSource(name="Butter", address="https://github.com/ButterB21/Butter-Scripts.git"),
    ArtifactSource(name="Jose", address="https://github.com/joseOSMB/JOSE-OSMB-SCRIPTS.git"),
    ArtifactSource(name="Fru", address="https://github.com/fru-art/fru-scripts.git"),
)


class Settings(BaseModel):
    """Global configuration options."""

    model_config = ConfigDict(frozen=True)

    target_directory: Path | None = None
    artifact_suffix: str = ".jar"
    history_depth: int = 1
    scan_workers: int = 1
    ledger_path: Path
    ledger_fallback_path: Path
    sources_path: Path
    log_dir: Path
    git_executable: str = "git"

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path) -> "Settings":
        data_dir = user_data_dir()

        def path_setting(key: str, default: Path) -> Path:
            value = raw.get(key)
            return _expand_path(value, base_dir=base_dir) if value else default

        target_raw = raw.get("target_directory")
        target = _expand_path(target_raw, base_dir=base_dir) if target_raw else None

        suffix = str(raw.get("artifact_suffix", ".jar")).strip()
        if not suffix.startswith("."):
            suffix = f".{suffix}"

        depth = int(raw.get("history_depth", 1))
        workers = int(raw.get("scan_workers", 1))
        if depth < 1:
            raise ConfigError("settings.history_depth must be at least 1")
        if workers < 1:
            raise ConfigError("settings.scan_workers must be at least 1")

        return cls(
            target_directory=target,
            artifact_suffix=suffix,
            history_depth=depth,
            scan_workers=workers,
            ledger_path=path_setting("ledger_path", data_dir / "ledger.toml"),
            ledger_fallback_path=path_setting("ledger_fallback_path", scratch_dir() / "ledger.toml"),
            sources_path=path_setting("sources_path", base_dir / DEFAULT_SOURCES_FILENAME),
            log_dir=path_setting("log_dir", data_dir / "logs"),
            git_executable=str(raw.get("git_executable", "git")),
        )

    def sparse_patterns(self) -> tuple[str, ...]:
        return (f"*{self.artifact_suffix}", f"**/*{self.artifact_suffix}")


class UpdateSettings(BaseModel):
    """Release feed settings used by ``binsync self-update``."""

    model_config = ConfigDict(frozen=True)

    owner: str = ""
    repo: str = ""
    api_base: str = "https://api.github.com"
    max_attempts: int = 3
    preferences_path: Path
    download_dir: Path

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path) -> "UpdateSettings":
        attempts = int(raw.get("max_attempts", 3))
        if attempts < 1:
            raise ConfigError("updates.max_attempts must be at least 1")
        prefs_raw = raw.get("preferences_path")
        download_raw = raw.get("download_dir")
        return cls(
            owner=str(raw.get("owner", "")).strip(),
            repo=str(raw.get("repo", "")).strip(),
            api_base=str(raw.get("api_base", "https://api.github.com")).rstrip("/"),
            max_attempts=attempts,
            preferences_path=(
                _expand_path(prefs_raw, base_dir=base_dir) if prefs_raw else user_data_dir() / "updater.toml"
            ),
            download_dir=(
                _expand_path(download_raw, base_dir=base_dir)
                if download_raw
                else Path(tempfile.gettempdir()) / "binsync-updates"
            ),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.owner and self.repo)


class Config(BaseModel):
    """Fully parsed configuration file."""

    model_config = ConfigDict(frozen=True)

    config_path: Path
    settings: Settings
    updates: UpdateSettings

    def with_target_directory(self, target: Path) -> "Config":
        settings = self.settings.model_copy(update={"target_directory": target})
        return self.model_copy(update={"settings": settings})


def load_config(path: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file or to a directory containing
            ``binsync.toml``. Without it the per-user configuration is used,
            and a missing per-user file yields the defaults.
    """

    config_path = _resolve_config_path(path)
    base_dir = config_path.parent

    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as handle:
                data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Configuration file '{config_path}' is not valid TOML: {exc}") from exc

    try:
        settings = Settings.from_raw(data.get("settings") or {}, base_dir=base_dir)
        updates = UpdateSettings.from_raw(data.get("updates") or {}, base_dir=base_dir)
    except (TypeError, ValueError, ValidationError) as exc:
        raise ConfigError(f"Invalid configuration in '{config_path}': {exc}") from exc

    return Config(config_path=config_path, settings=settings, updates=updates)


def store_target_directory(config_path: Path, target: Path) -> None:
    """Persist ``target`` as ``settings.target_directory`` in ``config_path``."""

    data: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    data.setdefault("settings", {})["target_directory"] = str(target)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("wb") as handle:
        tomli_w.dump(data, handle)


def load_sources(path: Path) -> list[ArtifactSource]:
    """Load the ordered source list, falling back to ``DEFAULT_SOURCES``."""

    if not path.exists():
        return list(DEFAULT_SOURCES)

    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Source list '{path}' is not valid TOML: {exc}") from exc

    raw_sources = data.get("sources")
    if not raw_sources:
        return list(DEFAULT_SOURCES)

    sources: list[ArtifactSource] = []
    for index, raw in enumerate(raw_sources):
        try:
            sources.append(ArtifactSource.model_validate(raw))
        except ValidationError as exc:
            raise ConfigError(f"Source #{index + 1} in '{path}' is invalid: {exc}") from exc
    conflict = duplicate_source(sources)
    if conflict:
        raise ConfigError(f"{conflict} in '{path}'")
    return sources


def duplicate_source(sources: Iterable[ArtifactSource]) -> str | None:
    """Describe the first repeated name or address, or return ``None``.

    Scan results are cached per address, so two sources sharing one would
    overwrite each other.
    """

    names: set[str] = set()
    addresses: set[str] = set()
    for source in sources:
        if source.name.lower() in names:
            return f"Source name '{source.name}' is defined more than once"
        if source.address in addresses:
            return f"Source address '{source.address}' is used by more than one source"
        names.add(source.name.lower())
        addresses.add(source.address)
    return None


def save_sources(path: Path, sources: Iterable[ArtifactSource]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"sources": [source.model_dump() for source in sources]}
    with path.open("wb") as handle:
        tomli_w.dump(payload, handle)


def _resolve_config_path(path: Path | None) -> Path:
    if path is None:
        return (user_config_dir() / DEFAULT_CONFIG_FILENAME).resolve(strict=False)

    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)
