"""Configuration loading utilities for the Deckshow application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".deckshow_write_check"

DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024
DEFAULT_SLIDE_DPI = 200
MAX_UPLOAD_BYTES_ENV = "DECKSHOW_MAX_UPLOAD_BYTES"

SetCollisionPolicy = Literal["merge", "suffix", "reject"]
ProjectCollisionPolicy = Literal["merge", "reject"]

_SET_COLLISION_POLICIES: Tuple[str, ...] = ("merge", "suffix", "reject")
_PROJECT_COLLISION_POLICIES: Tuple[str, ...] = ("merge", "reject")


class ConfigError(ValueError):
    """Raised when the configuration file contains unusable values."""


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. When nothing can be prepared the
    original ``preferred`` path is returned so the bootstrap step can report
    the failure with a meaningful location.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _read_max_upload_bytes(raw_value: Any) -> int:
    override = (os.environ.get(MAX_UPLOAD_BYTES_ENV) or "").strip()
    if override:
        try:
            return int(override)
        except ValueError:
            LOGGER.warning(
                "Ignoring invalid %s value '%s'", MAX_UPLOAD_BYTES_ENV, override
            )
    if raw_value is None:
        return DEFAULT_MAX_UPLOAD_BYTES
    try:
        return int(raw_value)
    except (TypeError, ValueError) as error:
        raise ConfigError(f"Invalid max_upload_bytes value: {raw_value!r}") from error


def _read_choice(mapping: Dict[str, Any], key: str, default: str, options: Tuple[str, ...]) -> str:
    value = str(mapping.get(key, default)).strip().lower()
    if value not in options:
        raise ConfigError(
            f"Invalid {key} value '{value}'. Expected one of: {', '.join(options)}"
        )
    return value


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings for storage layout and ingestion policies."""

    storage_root: Path
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    slide_dpi: int = DEFAULT_SLIDE_DPI
    set_collision: SetCollisionPolicy = "suffix"
    project_collision: ProjectCollisionPolicy = "reject"
    rollback_partial_sets: bool = True

    @property
    def presentations_root(self) -> Path:
        """Directory holding one subdirectory per project."""

        return (self.storage_root / "presentations").resolve()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".deckshow" / "storage"
        storage_root, _ = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        slide_dpi = int(mapping.get("slide_dpi", DEFAULT_SLIDE_DPI))
        if slide_dpi <= 0:
            raise ConfigError(f"slide_dpi must be positive (got {slide_dpi})")

        return cls(
            storage_root=storage_root,
            max_upload_bytes=_read_max_upload_bytes(mapping.get("max_upload_bytes")),
            slide_dpi=slide_dpi,
            set_collision=_read_choice(  # type: ignore[arg-type]
                mapping, "set_collision", "suffix", _SET_COLLISION_POLICIES
            ),
            project_collision=_read_choice(  # type: ignore[arg-type]
                mapping, "project_collision", "reject", _PROJECT_COLLISION_POLICIES
            ),
            rollback_partial_sets=bool(mapping.get("rollback_partial_sets", True)),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = [
    "AppConfig",
    "ConfigError",
    "DEFAULT_MAX_UPLOAD_BYTES",
    "DEFAULT_SLIDE_DPI",
    "ProjectCollisionPolicy",
    "SetCollisionPolicy",
    "load_config",
]
