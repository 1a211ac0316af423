from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Set

import logging

import discord
from github import GithubException

from .constants import MSG_ISSUE_CLOSED, MSG_ISSUE_REOPENED
from .identifiers import decode_thread_id
from .models import ExternalTicket, Project, ProjectReport, SyncSettings, ThreadRecord, TicketState
from .sources import IssueStateSource, ThreadStateSource


log = logging.getLogger("red.issuebridge.reconciler")

# Failures we expect from the two APIs; anything else gets a traceback
API_ERRORS = (discord.HTTPException, GithubException)


class Reconciler:
    """
    Brings one project's forum threads in line with its GitHub issues.

    Per cycle every thread is in one of three states, worked out from scratch:

    - open-linked: an open issue's title carries the thread id. The thread must be
      unlocked and unarchived, so a locked or archived one gets the reopened notice
      followed by an unlock.
    - closed-discovered: no open issue names the thread, but the bot's own
      "issue created/updated" embed in it points at an issue that is now closed.
      The thread gets the closed notice followed by lock + archive.
    - unlinked: left alone.

    The notice always goes out before the edit. Both corrections only fire while
    the thread is out of line, so running a cycle twice is harmless.
    """

    def __init__(
        self,
        issues: IssueStateSource,
        threads: ThreadStateSource,
        forum,
        settings: Optional[SyncSettings] = None,
    ) -> None:
        self.issues = issues
        self.threads = threads
        self.forum = forum
        self.settings = settings or SyncSettings()

    @classmethod
    def from_clients(cls, tracker, forum, settings: Optional[SyncSettings] = None) -> "Reconciler":
        return cls(IssueStateSource(tracker), ThreadStateSource(forum), forum, settings)

    async def reconcile(self, project: Project) -> ProjectReport:
        """
        Run one pass for `project`.

        Failing to list open issues aborts the pass (the caller logs it); every
        later failure only costs the thread it happened on.
        """
        report = ProjectReport(project=project.name)

        open_tickets = await self.issues.list_linked_tickets(project, TicketState.OPEN)
        report.open_tickets = len(open_tickets)

        by_thread = self._group_by_thread(open_tickets)
        open_ids: Set[int] = set(by_thread)

        for thread_id, tickets in by_thread.items():
            if len(tickets) > 1:
                log.warning(
                    "Project %s: thread %s is named by several open issues (%s), leaving it alone",
                    project.name, thread_id, ", ".join(f"#{t.number}" for t in tickets),
                )
                report.ambiguous_ids.append(thread_id)
                continue
            await self._sync_open_ticket(project, thread_id, tickets[0], report)

        log.debug(
            "Project %s: discord thread status %d/%d exist (%d missing)",
            project.name, report.threads_present, len(by_thread), report.threads_missing,
        )

        try:
            threads = await self.threads.list_active_threads(project)
        except API_ERRORS as e:
            log.warning("Project %s: failed to list active threads: %s", project.name, e)
            report.failures += 1
            threads = []
        except Exception:
            log.exception("Project %s: failed to list active threads", project.name)
            report.failures += 1
            threads = []

        for thread in threads:
            await self._sync_thread(project, thread, open_ids, report)

        log.info(
            "Project %s: %d open issues, %d reopened, %d closed, %d missing threads, %d failures",
            project.name, report.open_tickets, len(report.reopened), len(report.closed),
            report.threads_missing, report.failures,
        )
        return report

    @staticmethod
    def _group_by_thread(tickets: List[ExternalTicket]) -> Dict[int, List[ExternalTicket]]:
        grouped: Dict[int, List[ExternalTicket]] = defaultdict(list)
        for ticket in tickets:
            thread_id = decode_thread_id(ticket.title)
            if thread_id is not None:
                grouped[thread_id].append(ticket)
        return dict(grouped)

    def _log_failure(self, project: Project, operation: str, thread_id: int, exc: Exception) -> None:
        if isinstance(exc, API_ERRORS):
            log.warning("Project %s: failed to %s for thread %s: %s", project.name, operation, thread_id, exc)
        else:
            log.error(
                "Project %s: failed to %s for thread %s", project.name, operation, thread_id, exc_info=exc
            )

    async def _sync_open_ticket(
        self, project: Project, thread_id: int, ticket: ExternalTicket, report: ProjectReport
    ) -> None:
        try:
            thread = await self.threads.get_thread(thread_id)
        except Exception as e:
            self._log_failure(project, "fetch thread", thread_id, e)
            report.failures += 1
            return

        if thread is None:
            log.warning("Thread %s not found - GitHub issue: %s", thread_id, ticket.url)
            report.threads_missing += 1
            return
        report.threads_present += 1

        if not (thread.locked or thread.archived):
            return

        try:
            await self.forum.send_message(thread.id, MSG_ISSUE_REOPENED)
            await self.forum.edit_thread(thread.id, locked=False, archived=False)
        except Exception as e:
            self._log_failure(project, "reopen", thread.id, e)
            report.failures += 1
            return

        report.reopened.append(thread.id)
        log.info("Unlocked and unarchived thread %s for reopened issue #%s", thread.id, ticket.number)

    async def _sync_thread(
        self, project: Project, thread: ThreadRecord, open_ids: Set[int], report: ProjectReport
    ) -> None:
        if not self.settings.has_managed_prefix(thread.name):
            return
        if thread.locked or thread.archived:
            return
        if thread.id in open_ids:
            return

        log.debug("Checking thread %s (%s) for closure", thread.id, thread.name)

        try:
            link = await self.threads.discover_linked_ticket(project, thread)
            if link is None:
                return
            ticket = await self.issues.get_ticket(project, link.number)
        except Exception as e:
            self._log_failure(project, "look up linked issue", thread.id, e)
            report.failures += 1
            return

        if ticket.state is not TicketState.CLOSED:
            return

        log.info("Thread %s has closed issue #%s, archiving", thread.id, ticket.number)
        try:
            await self.forum.send_message(thread.id, MSG_ISSUE_CLOSED)
            await self.forum.edit_thread(thread.id, locked=True, archived=True)
        except Exception as e:
            self._log_failure(project, "close", thread.id, e)
            report.failures += 1
            return

        report.closed.append(thread.id)
        log.info("Locked and archived thread %s - issue #%s is closed", thread.id, ticket.number)
