from __future__ import annotations

from typing import List, Optional, Union

import logging

from .constants import DISCORD_MESSAGE_FETCH_LIMIT, ISSUE_LINK_EMBED_TITLES
from .identifiers import decode_thread_id, extract_issue_url, parse_issue_url
from .models import DiscoveredLink, ExternalTicket, Project, ThreadRecord, TicketState


log = logging.getLogger("red.issuebridge.sources")


class IssueStateSource:
    """GitHub side of the sync: issues whose title carries a thread id."""

    def __init__(self, tracker) -> None:
        self.tracker = tracker

    @staticmethod
    def build_query(project: Project, state: TicketState) -> str:
        # GitHub search cannot match "[digits]", so titles are filtered client-side
        return f"repo:{project.full_repo} is:issue is:{state.value} in:title"

    async def list_linked_tickets(
        self, project: Project, state: Union[TicketState, str]
    ) -> List[ExternalTicket]:
        state = TicketState.parse(state)
        tickets = await self.tracker.search_issues(self.build_query(project, state))
        linked = [t for t in tickets if decode_thread_id(t.title) is not None]
        log.debug(
            "Project %s: %d %s issues, %d carry a thread id",
            project.name, len(tickets), state.value, len(linked),
        )
        return linked

    async def get_ticket(self, project: Project, number: int) -> ExternalTicket:
        return await self.tracker.get_issue(project.github_owner, project.github_repo, number)


class ThreadStateSource:
    """Discord side of the sync: forum threads and the issue links posted in them."""

    def __init__(self, forum, *, message_limit: int = DISCORD_MESSAGE_FETCH_LIMIT) -> None:
        self.forum = forum
        self.message_limit = message_limit

    async def list_active_threads(self, project: Project) -> List[ThreadRecord]:
        threads = await self.forum.active_threads(project.guild_id)
        return [t for t in threads if t.parent_id == project.forum_id]

    async def get_thread(self, thread_id: int) -> Optional[ThreadRecord]:
        return await self.forum.get_thread(thread_id)

    async def discover_linked_ticket(
        self, project: Project, thread: ThreadRecord
    ) -> Optional[DiscoveredLink]:
        """
        Find the issue this thread was filed as, from the bot's own notifications.

        Only the newest `message_limit` messages are read, newest first, and the
        first "issue created/updated" embed with a usable URL wins. A link older
        than the window cannot be found this way.
        """
        bot_id = self.forum.bot_user_id
        if bot_id is None:
            log.debug("Bot user not available yet, skipping discovery for thread %s", thread.id)
            return None

        messages = await self.forum.recent_messages(thread.id, self.message_limit)
        for message in messages:
            if message.author_id != bot_id:
                continue
            for embed in message.embeds:
                if embed.title not in ISSUE_LINK_EMBED_TITLES:
                    continue
                url = extract_issue_url(embed.description or "")
                if not url:
                    continue
                parsed = parse_issue_url(url)
                if not parsed:
                    continue
                owner, repo, number = parsed
                if (owner.lower(), repo.lower()) != (project.github_owner.lower(), project.github_repo.lower()):
                    log.debug("Thread %s links to %s/%s, not %s; ignoring", thread.id, owner, repo, project.full_repo)
                    continue
                log.debug("Found issue link in thread %s: %s", thread.id, url)
                return DiscoveredLink(thread_id=thread.id, number=number, url=url)
        return None
