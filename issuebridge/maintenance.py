"""
One-off maintenance operations behind the `[p]issuebridge` commands.

None of these run on the sync timer. `audit_project` and `list_linked_tickets` only
read; `archive_locked_threads` tidies threads that were locked without being archived.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

import logging

from .identifiers import decode_thread_id
from .models import ExternalTicket, Project, SyncSettings, ThreadRecord, TicketState
from .reconciler import API_ERRORS
from .sources import IssueStateSource, ThreadStateSource


log = logging.getLogger("red.issuebridge.maintenance")


@dataclass
class AuditResult:
    project: str
    open_tickets: List[ExternalTicket] = field(default_factory=list)
    correctly_unlocked: int = 0
    # (thread id, thread name, what is wrong)
    wrong_state: List[Tuple[int, str, str]] = field(default_factory=list)
    missing: List[ExternalTicket] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.wrong_state and not self.missing

    @property
    def managed_threads(self) -> int:
        return self.correctly_unlocked + len(self.wrong_state)


async def audit_project(
    issues: IssueStateSource, threads: ThreadStateSource, project: Project
) -> AuditResult:
    """
    Compare open issues with the forum's active threads without changing anything.

    Only threads named by an open issue are looked at; other threads, prefixed or
    not, are outside the sync's reach until an issue is filed for them.
    """
    result = AuditResult(project=project.name)
    result.open_tickets = await issues.list_linked_tickets(project, TicketState.OPEN)
    by_id = {decode_thread_id(t.title): t for t in result.open_tickets}

    seen = set()
    for thread in await threads.list_active_threads(project):
        if thread.id not in by_id:
            continue
        seen.add(thread.id)
        if thread.archived:
            continue
        if thread.locked:
            result.wrong_state.append((thread.id, thread.name, "Should be UNLOCKED (issue is open)"))
        else:
            result.correctly_unlocked += 1

    result.missing = [t for tid, t in by_id.items() if tid not in seen]
    return result


async def list_linked_tickets(issues: IssueStateSource, project: Project) -> List[ExternalTicket]:
    """Every issue of the project, open or closed, that carries a thread id."""
    tickets: List[ExternalTicket] = []
    for state in TicketState:
        tickets.extend(await issues.list_linked_tickets(project, state))
    return sorted(tickets, key=lambda t: t.number, reverse=True)


async def archive_locked_threads(
    threads: ThreadStateSource, forum, project: Project, settings: SyncSettings
) -> List[ThreadRecord]:
    archived: List[ThreadRecord] = []
    for thread in await threads.list_active_threads(project):
        if not settings.has_managed_prefix(thread.name):
            continue
        if not thread.locked or thread.archived:
            continue
        try:
            await forum.edit_thread(thread.id, locked=True, archived=True)
        except API_ERRORS as e:
            log.warning("Failed to archive locked thread %s (%s): %s", thread.id, thread.name, e)
            continue
        archived.append(thread)
        log.info("Archived locked thread %s (%s)", thread.id, thread.name)
    return archived
