"""Shared fakes and fixtures for the IssueBridge tests.

FakeTracker and FakeForum stand in for GitHubTracker and DiscordForum. They keep
just enough state for several sync cycles to observe each other's edits, and
record every call so tests can check what happened and in which order.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Tuple

import pytest

from issuebridge.constants import MSG_ISSUE_CREATED
from issuebridge.models import (
    EmbedRecord,
    ExternalTicket,
    MessageRecord,
    Project,
    SyncSettings,
    ThreadRecord,
    TicketState,
)
from issuebridge.reconciler import Reconciler

GUILD_ID = 111
FORUM_ID = 222
BOT_ID = 999
OWNER = "acme"
REPO = "widgets"


def issue_url(number: int, owner: str = OWNER, repo: str = REPO) -> str:
    return f"https://github.com/{owner}/{repo}/issues/{number}"


class FakeTracker:
    def __init__(self) -> None:
        self.issues: Dict[int, ExternalTicket] = {}
        self.queries: List[str] = []
        self.lookups: List[int] = []
        self.search_error: Optional[Exception] = None
        self.lookup_errors: Dict[int, Exception] = {}

    def add_issue(self, number: int, title: str, state: TicketState = TicketState.OPEN) -> ExternalTicket:
        ticket = ExternalTicket(number=number, title=title, state=state, url=issue_url(number))
        self.issues[number] = ticket
        return ticket

    def set_state(self, number: int, state: TicketState) -> None:
        self.issues[number] = replace(self.issues[number], state=state)

    async def search_issues(self, query: str) -> List[ExternalTicket]:
        self.queries.append(query)
        if self.search_error:
            raise self.search_error
        wanted = [s for s in TicketState if f"is:{s.value}" in query.split()]
        return [t for t in self.issues.values() if not wanted or t.state in wanted]

    async def get_issue(self, owner: str, repo: str, number: int) -> ExternalTicket:
        self.lookups.append(number)
        if number in self.lookup_errors:
            raise self.lookup_errors[number]
        return self.issues[number]


class FakeForum:
    def __init__(self, bot_user_id: Optional[int] = BOT_ID) -> None:
        self.bot_user_id = bot_user_id
        self.threads: Dict[int, ThreadRecord] = {}
        self.messages: Dict[int, List[MessageRecord]] = {}
        self.calls: List[Tuple] = []
        self.errors: Dict[Tuple[str, int], Exception] = {}

    def add_thread(
        self,
        thread_id: int,
        name: str,
        *,
        parent_id: int = FORUM_ID,
        locked: bool = False,
        archived: bool = False,
    ) -> ThreadRecord:
        thread = ThreadRecord(id=thread_id, parent_id=parent_id, name=name, locked=locked, archived=archived)
        self.threads[thread_id] = thread
        return thread

    def add_message(self, thread_id: int, message: MessageRecord) -> None:
        # Newest first, like channel history
        self.messages.setdefault(thread_id, []).insert(0, message)

    def post_issue_link(self, thread_id: int, number: int, *, title: str = MSG_ISSUE_CREATED, **kw) -> None:
        embed = EmbedRecord(title=title, description=f"**Issue**: {issue_url(number, **kw)}")
        self.add_message(thread_id, MessageRecord(author_id=BOT_ID, embeds=(embed,)))

    def _maybe_fail(self, op: str, thread_id: int) -> None:
        if (op, thread_id) in self.errors:
            raise self.errors[(op, thread_id)]

    @property
    def mutations(self) -> List[Tuple]:
        return [c for c in self.calls if c[0] in ("send", "edit")]

    async def active_threads(self, guild_id: int) -> List[ThreadRecord]:
        self.calls.append(("active_threads", guild_id))
        self._maybe_fail("active_threads", guild_id)
        return [t for t in self.threads.values() if not t.archived]

    async def get_thread(self, thread_id: int) -> Optional[ThreadRecord]:
        self.calls.append(("get_thread", thread_id))
        self._maybe_fail("get_thread", thread_id)
        return self.threads.get(thread_id)

    async def edit_thread(self, thread_id: int, *, locked: bool, archived: bool) -> None:
        self.calls.append(("edit", thread_id, locked, archived))
        self._maybe_fail("edit", thread_id)
        self.threads[thread_id] = replace(self.threads[thread_id], locked=locked, archived=archived)

    async def send_message(self, thread_id: int, content: Optional[str] = None, *, embed=None) -> None:
        self.calls.append(("send", thread_id, content))
        self._maybe_fail("send", thread_id)
        self.add_message(thread_id, MessageRecord(author_id=BOT_ID, content=content or ""))

    async def recent_messages(self, thread_id: int, limit: int) -> List[MessageRecord]:
        self.calls.append(("recent_messages", thread_id, limit))
        self._maybe_fail("recent_messages", thread_id)
        return list(self.messages.get(thread_id, []))[:limit]


@pytest.fixture
def project() -> Project:
    return Project(name="widgets", github_owner=OWNER, github_repo=REPO, guild_id=GUILD_ID, forum_id=FORUM_ID)


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings()


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def forum() -> FakeForum:
    return FakeForum()


@pytest.fixture
def reconciler(tracker: FakeTracker, forum: FakeForum, settings: SyncSettings) -> Reconciler:
    return Reconciler.from_clients(tracker, forum, settings)
