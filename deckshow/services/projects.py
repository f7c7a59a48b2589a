"""Project discovery on top of the slide set repository."""

from __future__ import annotations

import logging
from typing import List, Sequence

from .naming import DEFAULT_PROJECT_ID
from .storage import ProjectRecord, SlideSetRepository


LOGGER = logging.getLogger(__name__)


class ProjectRegistry:
    """Enumerate projects from storage and pick the default selection."""

    def __init__(self, repository: SlideSetRepository) -> None:
        self._repository = repository

    def list_projects(self) -> List[ProjectRecord]:
        projects = [
            ProjectRecord(id=project_id, display_name=project_id)
            for project_id in self._repository.list_project_ids()
        ]
        projects.sort(key=lambda project: (project.display_name.casefold(), project.id))
        LOGGER.debug("Discovered %s project(s)", len(projects))
        return projects

    def exists(self, project_id: str) -> bool:
        return self._repository.project_dir(project_id).is_dir()

    @staticmethod
    def default_project(projects: Sequence[ProjectRecord]) -> str:
        """Return the first project id, or ``"DefaultProject"`` when there is none.

        The fallback is only a selection; nothing is created on disk.
        """

        if projects:
            return projects[0].id
        return DEFAULT_PROJECT_ID


__all__ = ["ProjectRegistry"]
