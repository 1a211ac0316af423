"""Tests for the PyGithub and discord.py adapters, using mocked library objects."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from issuebridge.clients import DiscordForum, GitHubTracker
from issuebridge.models import TicketState


def _gh_issue(number, title, state):
    issue = MagicMock()
    issue.number = number
    issue.title = title
    issue.state = state
    issue.html_url = f"https://github.com/acme/widgets/issues/{number}"
    return issue


def _thread(thread_id=10, *, parent_id=222, name="[BUG] crash", locked=False, archived=False):
    thread = MagicMock(spec=discord.Thread)
    thread.id = thread_id
    thread.parent_id = parent_id
    thread.name = name
    thread.locked = locked
    thread.archived = archived
    thread.edit = AsyncMock()
    return thread


def _not_found():
    return discord.NotFound(MagicMock(status=404, reason="Not Found"), "Unknown Channel")


def _forbidden():
    return discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "Missing Access")


class TestGitHubTracker:
    @pytest.mark.asyncio
    async def test_search_issues(self):
        gh = MagicMock()
        gh.search_issues.return_value = iter([_gh_issue(1, "crash [10]", "open"), _gh_issue(2, "old", "closed")])

        tickets = await GitHubTracker(gh).search_issues("repo:acme/widgets is:issue is:open in:title")

        gh.search_issues.assert_called_once_with("repo:acme/widgets is:issue is:open in:title")
        assert [(t.number, t.state) for t in tickets] == [(1, TicketState.OPEN), (2, TicketState.CLOSED)]
        assert tickets[0].url == "https://github.com/acme/widgets/issues/1"

    @pytest.mark.asyncio
    async def test_get_issue(self):
        gh = MagicMock()
        gh.get_repo.return_value.get_issue.return_value = _gh_issue(42, "crash [10]", "closed")

        ticket = await GitHubTracker(gh).get_issue("acme", "widgets", 42)

        gh.get_repo.assert_called_once_with("acme/widgets", lazy=True)
        gh.get_repo.return_value.get_issue.assert_called_once_with(42)
        assert ticket.state is TicketState.CLOSED


class TestDiscordForum:
    @pytest.mark.asyncio
    async def test_get_thread(self):
        bot = MagicMock()
        bot.fetch_channel = AsyncMock(return_value=_thread(locked=True))

        record = await DiscordForum(bot).get_thread(10)

        assert (record.id, record.parent_id, record.locked, record.archived) == (10, 222, True, False)

    @pytest.mark.asyncio
    async def test_get_thread_not_found(self):
        bot = MagicMock()
        bot.fetch_channel = AsyncMock(side_effect=_not_found())

        assert await DiscordForum(bot).get_thread(10) is None

    @pytest.mark.asyncio
    async def test_get_thread_inaccessible(self):
        bot = MagicMock()
        bot.fetch_channel = AsyncMock(side_effect=_forbidden())

        assert await DiscordForum(bot).get_thread(10) is None

    @pytest.mark.asyncio
    async def test_get_thread_not_a_thread(self):
        bot = MagicMock()
        bot.fetch_channel = AsyncMock(return_value=MagicMock(spec=discord.TextChannel))

        assert await DiscordForum(bot).get_thread(10) is None

    @pytest.mark.asyncio
    async def test_active_threads_uses_cached_guild(self):
        guild = MagicMock()
        guild.active_threads = AsyncMock(return_value=[_thread(1), _thread(2, parent_id=333)])
        bot = MagicMock()
        bot.get_guild.return_value = guild

        records = await DiscordForum(bot).active_threads(111)

        bot.get_guild.assert_called_once_with(111)
        assert [(r.id, r.parent_id) for r in records] == [(1, 222), (2, 333)]

    @pytest.mark.asyncio
    async def test_edit_thread(self):
        thread = _thread()
        bot = MagicMock()
        bot.fetch_channel = AsyncMock(return_value=thread)

        await DiscordForum(bot).edit_thread(10, locked=True, archived=True)

        thread.edit.assert_awaited_once_with(locked=True, archived=True)

    @pytest.mark.asyncio
    async def test_send_message(self):
        channel = MagicMock()
        channel.send = AsyncMock()
        bot = MagicMock()
        bot.get_partial_messageable.return_value = channel

        await DiscordForum(bot).send_message(10, "hello")

        bot.get_partial_messageable.assert_called_once_with(10)
        channel.send.assert_awaited_once_with(content="hello", embed=None)

    @pytest.mark.asyncio
    async def test_recent_messages(self):
        embed = discord.Embed(title="GitHub Issue Created", description="**Issue**: https://github.com/acme/widgets/issues/42")
        message = MagicMock()
        message.author.id = 999
        message.content = ""
        message.embeds = [embed]

        async def history(limit):
            assert limit == 50
            yield message

        channel = MagicMock()
        channel.history = history
        bot = MagicMock()
        bot.get_partial_messageable.return_value = channel

        records = await DiscordForum(bot).recent_messages(10, 50)

        assert records[0].author_id == 999
        assert records[0].embeds[0].title == "GitHub Issue Created"
        assert "issues/42" in records[0].embeds[0].description

    def test_bot_user_id(self):
        bot = MagicMock()
        bot.user.id = 999
        assert DiscordForum(bot).bot_user_id == 999
        bot.user = None
        assert DiscordForum(bot).bot_user_id is None
