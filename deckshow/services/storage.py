"""Filesystem-backed persistence for projects, slide sets and slides."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Tuple

from ..config import AppConfig, SetCollisionPolicy
from ..errors import SetCollisionError, SlideStorageError
from .events import emit_file_event
from .naming import build_set_id, is_valid_identifier, parse_set_id, parse_slide_index


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectRecord:
    id: str
    display_name: str


@dataclass(frozen=True)
class SlideSetRecord:
    project_id: str
    set_id: str
    created_at: datetime
    path: Path


@dataclass(frozen=True)
class SlideRecord:
    set_id: str
    index: int
    path: Path


Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _creation_time(path: Path) -> float:
    """Return the creation timestamp of *path* as reported by the platform.

    Linux does not expose ``st_birthtime`` through :func:`os.stat`, so the
    inode change time is used there. A set directory's change time moves when
    entries are added to or removed from it.
    """

    stat_result = path.stat()
    birthtime = getattr(stat_result, "st_birthtime", None)
    if birthtime:
        return float(birthtime)
    return float(stat_result.st_ctime)


def _set_sort_key(record: SlideSetRecord) -> Tuple[datetime, str, int]:
    """Order by creation time, then by timestamp and numeric collision suffix."""

    parsed = parse_set_id(record.set_id)
    if parsed is None:
        return record.created_at, record.set_id, 0
    base_id, sequence = parsed
    return record.created_at, base_id, sequence


class SlideSetRepository(Protocol):
    """Protocol describing where slide sets live and how they are resolved."""

    def project_dir(self, project_id: str) -> Path:
        """Return the storage location for *project_id*."""

    def list_project_ids(self) -> List[str]:
        """Return the identifiers of all stored projects (unsorted)."""

    def create_set(self, project_id: str) -> SlideSetRecord:
        """Create a new, empty slide set for *project_id*."""

    def list_sets(self, project_id: str) -> List[SlideSetRecord]:
        """Return the sets of *project_id*, newest first."""

    def latest_set(self, project_id: str) -> Optional[SlideSetRecord]:
        """Return the most recently created set of *project_id*."""

    def slides_of(self, slide_set: SlideSetRecord) -> List[SlideRecord]:
        """Return the slides of *slide_set* in presentation order."""


class FileSystemSlideSetRepository:
    """Slide set repository reading and writing ``<root>/<project>/<set>``.

    Every read re-derives its answer from the directory tree, so there is no
    cached state to invalidate after an upload.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        clock: Optional[Clock] = None,
        collision_policy: Optional[SetCollisionPolicy] = None,
    ) -> None:
        self._root = config.presentations_root
        self._clock: Clock = clock or _utc_now
        self._collision_policy: SetCollisionPolicy = collision_policy or config.set_collision

    @property
    def root(self) -> Path:
        return self._root

    def project_dir(self, project_id: str) -> Path:
        if not is_valid_identifier(project_id):
            raise ValueError(f"Invalid project identifier: {project_id!r}")
        return self._root / project_id

    def list_project_ids(self) -> List[str]:
        if not self._root.is_dir():
            return []
        identifiers: List[str] = []
        for entry in self._root.iterdir():
            if not entry.is_dir():
                continue
            if not is_valid_identifier(entry.name):
                LOGGER.debug("Skipping directory with unsupported name: %s", entry)
                continue
            identifiers.append(entry.name)
        return identifiers

    # ------------------------------------------------------------------
    # Set creation
    # ------------------------------------------------------------------
    def create_set(self, project_id: str) -> SlideSetRecord:
        project_dir = self.project_dir(project_id)
        base_id = build_set_id(self._clock())
        set_id = base_id
        target = project_dir / set_id
        sequence = 1
        start = time.perf_counter()
        try:
            project_dir.mkdir(parents=True, exist_ok=True)
            while True:
                try:
                    target.mkdir()
                    break
                except FileExistsError:
                    if self._collision_policy == "reject":
                        raise SetCollisionError(
                            f"A slide set named '{set_id}' already exists for project "
                            f"'{project_id}'. Wait a second and upload again."
                        ) from None
                    if self._collision_policy == "merge" and target.is_dir():
                        LOGGER.warning(
                            "Reusing existing slide set directory %s; files may be overwritten",
                            target,
                        )
                        break
                    sequence += 1
                    set_id = f"{base_id}_{sequence}"
                    target = project_dir / set_id
        except OSError as error:
            raise SlideStorageError(
                f"Unable to create slide set directory '{target}': {error}"
            ) from error

        emit_file_event(
            "create_set",
            payload={
                "project_id": project_id,
                "set_id": set_id,
                "path": target,
                "policy": self._collision_policy,
            },
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return self._build_record(project_id, target)

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------
    def list_sets(self, project_id: str) -> List[SlideSetRecord]:
        project_dir = self.project_dir(project_id)
        if not project_dir.is_dir():
            return []
        records: List[SlideSetRecord] = []
        for entry in project_dir.iterdir():
            if parse_set_id(entry.name) is None:
                continue
            try:
                if not entry.is_dir():
                    continue
                records.append(self._build_record(project_id, entry))
            except FileNotFoundError:
                # Removed by a concurrent rollback after iterdir() listed it.
                LOGGER.debug("Slide set %s disappeared while listing", entry)
        records.sort(key=_set_sort_key, reverse=True)
        return records

    def latest_set(self, project_id: str) -> Optional[SlideSetRecord]:
        sets = self.list_sets(project_id)
        if not sets:
            LOGGER.debug("Project '%s' has no slide sets", project_id)
            return None
        return sets[0]

    def slides_of(self, slide_set: SlideSetRecord) -> List[SlideRecord]:
        if not slide_set.path.is_dir():
            return []
        candidates = sorted(
            (entry for entry in slide_set.path.iterdir() if entry.is_file()),
            key=lambda entry: entry.name.casefold(),
        )
        slides: List[SlideRecord] = []
        for entry in candidates:
            index = parse_slide_index(entry.name)
            if index is None:
                continue
            slides.append(SlideRecord(set_id=slide_set.set_id, index=index, path=entry))
        return slides

    def _build_record(self, project_id: str, path: Path) -> SlideSetRecord:
        try:
            created = _creation_time(path)
        except FileNotFoundError:
            raise
        except OSError as error:
            raise SlideStorageError(f"Unable to inspect slide set '{path}': {error}") from error
        return SlideSetRecord(
            project_id=project_id,
            set_id=path.name,
            created_at=datetime.fromtimestamp(created, tz=timezone.utc),
            path=path,
        )


__all__ = [
    "Clock",
    "FileSystemSlideSetRepository",
    "ProjectRecord",
    "SlideRecord",
    "SlideSetRecord",
    "SlideSetRepository",
]
