from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import asyncio
import logging

from discord.ext import tasks

from .models import Project, ProjectConfigError, ProjectReport, SyncSettings
from .reconciler import API_ERRORS, Reconciler


log = logging.getLogger("red.issuebridge.scheduler")

# (project name, guild id, stored project dict)
ProjectEntry = Tuple[str, Any, Dict[str, Any]]
ProjectLoader = Callable[[], Awaitable[Iterable[ProjectEntry]]]


class SyncScheduler:
    """
    Runs the reconciler for every configured project on a fixed interval.

    Projects are handled one after another. Whatever goes wrong with one project
    is logged and the next one still runs, as does the next tick. A tick that
    takes longer than the interval is followed straight away by the next one.
    """

    def __init__(self, reconciler: Reconciler, load_projects: ProjectLoader, settings: SyncSettings) -> None:
        self.reconciler = reconciler
        self.settings = settings
        self._load_projects = load_projects
        self._loop: Optional[tasks.Loop] = None
        # Held per project so a manual sync never overlaps the polling tick
        self._lock = asyncio.Lock()

    def start(self) -> Optional[asyncio.Task]:
        """Launch the polling task, or do nothing when sync is disabled."""
        if not self.settings.enabled:
            log.info("Issue sync is disabled in configuration")
            return None
        log.info("Starting issue sync with interval: %d seconds", self.settings.interval_seconds)
        self._loop = tasks.loop(seconds=self.settings.interval_seconds)(self.run_once)
        return self._loop.start()

    async def run_once(self) -> List[ProjectReport]:
        try:
            entries = list(await self._load_projects())
        except Exception:
            log.exception("Failed to load project configuration")
            return []

        log.info("Starting sync cycle for %d projects", len(entries))
        reports = []
        for name, guild_id, data in entries:
            reports.append(await self.sync_project(name, guild_id, data))
        return reports

    async def sync_project(self, name: str, guild_id: Any, data: Dict[str, Any]) -> ProjectReport:
        try:
            project = Project.from_config(name, guild_id, data)
        except ProjectConfigError as e:
            log.error("Skipping project %s: %s", name, e)
            return ProjectReport(project=name, error=str(e))
        except Exception as e:
            log.exception("Failed to load project %s", name)
            return ProjectReport(project=name, error=str(e) or type(e).__name__)

        try:
            async with self._lock:
                log.info("Syncing project: %s", project.name)
                return await self.reconciler.reconcile(project)
        except API_ERRORS as e:
            log.warning("Error syncing project %s (%s): %s", project.name, project.full_repo, e)
            return ProjectReport(project=name, error=str(e))
        except Exception as e:
            log.exception("Error syncing project %s (%s)", project.name, project.full_repo)
            return ProjectReport(project=name, error=str(e) or type(e).__name__)
