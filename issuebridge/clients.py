from __future__ import annotations

from typing import List, Optional

import asyncio
import logging

import discord
from github import Auth, Github

from .models import EmbedRecord, ExternalTicket, MessageRecord, ThreadRecord, TicketState


log = logging.getLogger("red.issuebridge.clients")


class GitHubTracker:
    """
    Read-only view of GitHub issues.

    PyGithub is blocking, so every call (including paging through search results)
    happens in a worker thread.
    """

    def __init__(self, github: Github) -> None:
        self._gh = github

    @classmethod
    def from_token(cls, token: str) -> "GitHubTracker":
        return cls(Github(auth=Auth.Token(token)))

    @staticmethod
    def _to_ticket(issue) -> ExternalTicket:
        return ExternalTicket(
            number=issue.number,
            title=issue.title or "",
            state=TicketState.parse(issue.state),
            url=issue.html_url,
        )

    async def _gh_call(self, fn_noargs):
        return await asyncio.to_thread(fn_noargs)

    async def search_issues(self, query: str) -> List[ExternalTicket]:
        log.debug("Searching GitHub issues: %s", query)
        return await self._gh_call(
            lambda: [self._to_ticket(issue) for issue in self._gh.search_issues(query)]
        )

    async def get_issue(self, owner: str, repo: str, number: int) -> ExternalTicket:
        log.debug("Fetching issue %s/%s#%s", owner, repo, number)
        return await self._gh_call(
            lambda: self._to_ticket(self._gh.get_repo(f"{owner}/{repo}", lazy=True).get_issue(number))
        )

    def close(self) -> None:
        self._gh.close()


class DiscordForum:
    """Thin wrapper over a discord.py client exposing just what the sync needs."""

    def __init__(self, bot: discord.Client) -> None:
        self.bot = bot

    @property
    def bot_user_id(self) -> Optional[int]:
        return self.bot.user.id if self.bot.user else None

    @staticmethod
    def _to_thread_record(thread: discord.Thread) -> ThreadRecord:
        return ThreadRecord(
            id=thread.id,
            parent_id=thread.parent_id,
            name=thread.name,
            locked=bool(thread.locked),
            archived=bool(thread.archived),
        )

    @staticmethod
    def _to_message_record(message: discord.Message) -> MessageRecord:
        return MessageRecord(
            author_id=message.author.id,
            content=message.content or "",
            embeds=tuple(EmbedRecord(title=e.title, description=e.description) for e in message.embeds),
        )

    async def _fetch_thread(self, thread_id: int) -> discord.Thread:
        channel = await self.bot.fetch_channel(thread_id)
        if not isinstance(channel, discord.Thread):
            raise TypeError(f"Channel {thread_id} is not a thread")
        return channel

    async def active_threads(self, guild_id: int) -> List[ThreadRecord]:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            guild = await self.bot.fetch_guild(guild_id)
        threads = await guild.active_threads()
        return [self._to_thread_record(t) for t in threads]

    async def get_thread(self, thread_id: int) -> Optional[ThreadRecord]:
        """Fetch a thread's current state; None when it is gone or is not a thread."""
        try:
            channel = await self.bot.fetch_channel(thread_id)
        except (discord.NotFound, discord.Forbidden):
            return None
        if not isinstance(channel, discord.Thread):
            return None
        return self._to_thread_record(channel)

    async def edit_thread(self, thread_id: int, *, locked: bool, archived: bool) -> None:
        thread = await self._fetch_thread(thread_id)
        await thread.edit(locked=locked, archived=archived)

    async def send_message(
        self, thread_id: int, content: Optional[str] = None, *, embed: Optional[discord.Embed] = None
    ) -> None:
        await self.bot.get_partial_messageable(thread_id).send(content=content, embed=embed)

    async def recent_messages(self, thread_id: int, limit: int) -> List[MessageRecord]:
        channel = self.bot.get_partial_messageable(thread_id)
        return [self._to_message_record(m) async for m in channel.history(limit=limit)]
