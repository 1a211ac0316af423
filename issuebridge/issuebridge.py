from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import asyncio
import contextlib
import logging
import re

import discord
from redbot.core import commands, Config
from redbot.core.bot import Red
from github import Auth, Github, GithubException

from .clients import DiscordForum, GitHubTracker
from .constants import COLOR_SUCCESS, DEFAULT_SYNC_INTERVAL, DEFAULT_THREAD_PREFIXES, MIN_SYNC_INTERVAL
from .maintenance import archive_locked_threads, audit_project, list_linked_tickets
from .models import Project, ProjectConfigError, ProjectReport, SyncSettings, TicketState
from .reconciler import Reconciler
from .scheduler import ProjectEntry, SyncScheduler


REPO_RE = re.compile(r"^([\w.-]+)/([\w.-]+)$")


class IssueBridge(commands.Cog):
    """
    Keep Discord forum threads in step with the GitHub issues filed from them.

    - An issue title ends in "[<thread id>]"; that is the only link between the two
    - Threads whose issue is open get unlocked and unarchived
    - Threads whose issue was closed get locked and archived
    - Links for closed issues are recovered from the bot's own messages in the thread
    - Nothing about the link is stored; every cycle starts from scratch
    """

    def __init__(self, bot: Red) -> None:
        self.bot = bot
        self.config = Config.get_conf(self, identifier=908039527271104517, force_registration=True)
        self.log = logging.getLogger(f"red.{__name__}")

        self.config.register_global(
            github_token=None,  # GitHub PAT
            sync_enabled=True,
            sync_interval=DEFAULT_SYNC_INTERVAL,  # seconds
            thread_prefixes=list(DEFAULT_THREAD_PREFIXES),
        )
        self.config.register_guild(
            projects={},  # name -> {"github_owner", "github_repo", "forum_id", "allowed_role_id"}
        )

        self._tracker: Optional[GitHubTracker] = None
        self._scheduler: Optional[SyncScheduler] = None
        self._sync_task: Optional[asyncio.Task] = None
        self._startup_task: Optional[asyncio.Task] = None

    # ----------------------
    # Lifecycle
    # ----------------------
    async def cog_load(self) -> None:
        self._startup_task = asyncio.create_task(self._start_when_ready())

    async def cog_unload(self) -> None:
        if self._startup_task:
            self._startup_task.cancel()
        self._stop_engine()
        self.log.debug("IssueBridge sync stopped")

    async def _start_when_ready(self) -> None:
        await self.bot.wait_until_red_ready()
        await self._restart_engine()

    def _stop_engine(self) -> None:
        if self._sync_task and not self._sync_task.done():
            self._sync_task.cancel()
        self._sync_task = None
        self._scheduler = None
        if self._tracker:
            with contextlib.suppress(Exception):
                self._tracker.close()
        self._tracker = None

    async def _restart_engine(self) -> None:
        """Rebuild clients from the stored settings and relaunch the polling task."""
        self._stop_engine()
        token = await self.config.github_token()
        if not token:
            self.log.warning("No GitHub token set; issue sync not started")
            return

        settings = await self._settings()
        self._tracker = GitHubTracker.from_token(token)
        forum = DiscordForum(self.bot)
        reconciler = Reconciler.from_clients(self._tracker, forum, settings)
        self._scheduler = SyncScheduler(reconciler, self._load_projects, settings)
        self._sync_task = self._scheduler.start()

    async def _settings(self) -> SyncSettings:
        data = await self.config.all()
        return SyncSettings(
            enabled=bool(data["sync_enabled"]),
            interval_seconds=int(data["sync_interval"]),
            thread_prefixes=tuple(data["thread_prefixes"]),
        )

    async def _load_projects(self) -> List[ProjectEntry]:
        entries: List[ProjectEntry] = []
        for guild_id, data in (await self.config.all_guilds()).items():
            for name, project in data.get("projects", {}).items():
                entries.append((name, guild_id, project))
        return entries

    async def _guild_projects(self, guild: discord.Guild) -> List[Tuple[str, Optional[Project], Optional[str]]]:
        result = []
        projects: Dict[str, Any] = await self.config.guild(guild).projects()
        for name, data in projects.items():
            try:
                result.append((name, Project.from_config(name, guild.id, data), None))
            except ProjectConfigError as e:
                result.append((name, None, str(e)))
        return result

    async def _require_engine(self, ctx: commands.Context) -> Optional[SyncScheduler]:
        if not self._scheduler:
            await ctx.send(f"❌ No GitHub token configured. Use `{ctx.prefix}issuebridgeset token`.")
            return None
        return self._scheduler

    # ----------------------
    # Configuration Commands
    # ----------------------
    @commands.group(name="issuebridgeset")  # type: ignore
    @commands.guild_only()
    @commands.admin_or_permissions(manage_guild=True)
    async def issuebridgeset(self, ctx: commands.Context) -> None:
        """Configure the Discord forum <-> GitHub issue sync."""

    @issuebridgeset.command(name="token")
    @commands.is_owner()
    async def issuebridgeset_token(self, ctx: commands.Context, token: str) -> None:
        """Set the GitHub personal access token used for all projects."""
        with contextlib.suppress(Exception):
            await ctx.message.delete()

        def validate() -> str:
            gh = Github(auth=Auth.Token(token))
            try:
                return gh.get_user().login
            finally:
                gh.close()

        try:
            login = await asyncio.to_thread(validate)
        except GithubException:
            await ctx.send("❌ Token validation failed. Please check your token.")
            return
        except Exception:
            self.log.exception("Unexpected error validating GitHub token")
            await ctx.send("❌ An error occurred while validating the token.")
            return

        await self.config.github_token.set(token)
        await self._restart_engine()
        await ctx.send(f"✅ GitHub token set and validated (authenticated as `{login}`).")

    @issuebridgeset.group(name="project")
    async def issuebridgeset_project(self, ctx: commands.Context) -> None:
        """Manage the forums synced in this server."""

    @issuebridgeset_project.command(name="add")
    async def issuebridgeset_project_add(
        self, ctx: commands.Context, name: str, repo: str, forum: discord.ForumChannel
    ) -> None:
        """
        Link a forum channel to a GitHub repository.

        Example: `[p]issuebridgeset project add game myorg/mygame #bug-reports`
        """
        m = REPO_RE.match(repo)
        if not m:
            await ctx.send("❌ Invalid repository format. Use `owner/repo`.")
            return
        project = Project(
            name=name,
            github_owner=m.group(1),
            github_repo=m.group(2),
            guild_id=ctx.guild.id,
            forum_id=forum.id,
        )
        async with self.config.guild(ctx.guild).projects() as projects:
            previous = projects.get(name, {})
            data = project.to_config()
            data["allowed_role_id"] = previous.get("allowed_role_id")
            projects[name] = data
        await ctx.send(f"✅ Project `{name}`: {forum.mention} ↔ `{project.full_repo}`.")

    @issuebridgeset_project.command(name="remove")
    async def issuebridgeset_project_remove(self, ctx: commands.Context, name: str) -> None:
        """Stop syncing a project. Threads and issues are left as they are."""
        async with self.config.guild(ctx.guild).projects() as projects:
            if projects.pop(name, None) is None:
                await ctx.send(f"❌ No project named `{name}`.")
                return
        await ctx.send(f"✅ Project `{name}` removed.")

    @issuebridgeset_project.command(name="role")
    async def issuebridgeset_project_role(
        self, ctx: commands.Context, name: str, role: Optional[discord.Role] = None
    ) -> None:
        """Set or clear the role required to file issues from a project's forum."""
        async with self.config.guild(ctx.guild).projects() as projects:
            if name not in projects:
                await ctx.send(f"❌ No project named `{name}`.")
                return
            projects[name]["allowed_role_id"] = str(role.id) if role else None
        if role:
            await ctx.send(f"✅ Filing issues for `{name}` now requires {role.mention}.")
        else:
            await ctx.send(f"✅ Role requirement cleared for `{name}`.")

    @issuebridgeset.command(name="poll")
    @commands.is_owner()
    async def issuebridgeset_poll(
        self, ctx: commands.Context, enabled: Optional[bool] = None, interval: Optional[int] = None
    ) -> None:
        """
        Enable/disable the periodic sync and/or set its interval in seconds.

        Minimum interval is 10 seconds.
        """
        if interval is not None and interval < MIN_SYNC_INTERVAL:
            await ctx.send(f"❌ Minimum interval is {MIN_SYNC_INTERVAL} seconds.")
            return
        if enabled is None and interval is None:
            await ctx.send_help()
            return
        if enabled is not None:
            await self.config.sync_enabled.set(bool(enabled))
        if interval is not None:
            await self.config.sync_interval.set(int(interval))

        await self._restart_engine()
        settings = await self._settings()
        embed = discord.Embed(
            title="📊 Sync Configuration Updated",
            color=discord.Color.green() if settings.enabled else discord.Color.red(),
        )
        embed.add_field(name="Status", value="✅ Enabled" if settings.enabled else "❌ Disabled", inline=True)
        embed.add_field(name="Interval", value=f"{settings.interval_seconds}s", inline=True)
        running = self._sync_task is not None and not self._sync_task.done()
        embed.add_field(name="Task Status", value="🟢 Running" if running else "🔴 Stopped", inline=True)
        await ctx.send(embed=embed)

    @issuebridgeset.group(name="prefixes", invoke_without_command=True)
    @commands.is_owner()
    async def issuebridgeset_prefixes(self, ctx: commands.Context) -> None:
        """Show the thread name prefixes that mark a thread as managed."""
        prefixes = await self.config.thread_prefixes()
        await ctx.send("Managed thread prefixes: " + (", ".join(f"`{p}`" for p in prefixes) or "none"))

    @issuebridgeset_prefixes.command(name="add")
    async def issuebridgeset_prefixes_add(self, ctx: commands.Context, prefix: str) -> None:
        """Add a thread name prefix, such as `[BUG]`, to the managed list."""
        async with self.config.thread_prefixes() as prefixes:
            if prefix not in prefixes:
                prefixes.append(prefix)
        await self._restart_engine()
        await ctx.tick()

    @issuebridgeset_prefixes.command(name="remove")
    async def issuebridgeset_prefixes_remove(self, ctx: commands.Context, prefix: str) -> None:
        """Remove a thread name prefix from the managed list."""
        async with self.config.thread_prefixes() as prefixes:
            if prefix not in prefixes:
                await ctx.send(f"❌ `{prefix}` is not a managed prefix.")
                return
            prefixes.remove(prefix)
        await self._restart_engine()
        await ctx.tick()

    @issuebridgeset_prefixes.command(name="reset")
    async def issuebridgeset_prefixes_reset(self, ctx: commands.Context) -> None:
        """Restore the default managed prefixes."""
        await self.config.thread_prefixes.clear()
        await self._restart_engine()
        await ctx.tick()

    @issuebridgeset.command(name="show")
    async def issuebridgeset_show(self, ctx: commands.Context) -> None:
        """Show the sync settings and check this server's projects for configuration errors."""
        settings = await self._settings()
        token_set = bool(await self.config.github_token())

        embed = discord.Embed(title="🔧 IssueBridge Configuration", color=COLOR_SUCCESS)
        embed.add_field(name="GitHub Token", value="✅ Set" if token_set else "❌ Not set", inline=True)
        embed.add_field(name="Sync", value="✅ Enabled" if settings.enabled else "❌ Disabled", inline=True)
        embed.add_field(name="Interval", value=f"{settings.interval_seconds}s", inline=True)
        embed.add_field(
            name="Thread Prefixes", value=", ".join(f"`{p}`" for p in settings.thread_prefixes) or "none", inline=False
        )

        projects = await self._guild_projects(ctx.guild)
        if not projects:
            embed.add_field(name="Projects", value="None configured", inline=False)
        for name, project, error in projects[:20]:
            if project is None:
                embed.add_field(name=f"❌ {name}", value=f"Configuration error: {error}", inline=False)
                continue
            lines = [f"GitHub: `{project.full_repo}`", f"Forum: <#{project.forum_id}>"]
            if project.allowed_role_id:
                lines.append(f"Required role: <@&{project.allowed_role_id}>")
            embed.add_field(name=f"✅ {name}", value="\n".join(lines), inline=False)
        await ctx.send(embed=embed)

    # ----------------------
    # Operator Commands
    # ----------------------
    @commands.group(name="issuebridge")  # type: ignore
    @commands.guild_only()
    @commands.admin_or_permissions(manage_guild=True)
    async def issuebridge(self, ctx: commands.Context) -> None:
        """Inspect and run the forum <-> GitHub sync."""

    @issuebridge.command(name="syncnow")
    async def issuebridge_syncnow(self, ctx: commands.Context) -> None:
        """Run one sync cycle for this server's projects now."""
        scheduler = await self._require_engine(ctx)
        if not scheduler:
            return
        projects: Dict[str, Any] = await self.config.guild(ctx.guild).projects()
        if not projects:
            await ctx.send("❌ No projects configured in this server.")
            return

        async with ctx.typing():
            reports = [await scheduler.sync_project(name, ctx.guild.id, data) for name, data in projects.items()]

        embed = discord.Embed(title="🔄 Sync Complete", color=COLOR_SUCCESS)
        for report in reports[:20]:
            embed.add_field(name=report.project, value=self._format_report(report), inline=False)
        await ctx.send(embed=embed)

    @staticmethod
    def _format_report(report: ProjectReport) -> str:
        if not report.ok:
            return f"❌ {report.error}"
        lines = [
            f"Open issues with thread ids: {report.open_tickets}",
            f"Threads found: {report.threads_present} ({report.threads_missing} missing)",
            f"Reopened: {len(report.reopened)} · Closed: {len(report.closed)}",
        ]
        if report.ambiguous_ids:
            lines.append("⚠️ Threads named by several open issues: " + ", ".join(map(str, report.ambiguous_ids)))
        if report.failures:
            lines.append(f"⚠️ {report.failures} operations failed, see logs")
        return "\n".join(lines)

    @issuebridge.command(name="audit")
    async def issuebridge_audit(self, ctx: commands.Context) -> None:
        """Compare open issues with forum threads without changing anything."""
        scheduler = await self._require_engine(ctx)
        if not scheduler:
            return
        reconciler = scheduler.reconciler

        for name, project, error in await self._guild_projects(ctx.guild):
            if project is None:
                await ctx.send(f"❌ `{name}`: {error}")
                continue
            try:
                async with ctx.typing():
                    result = await audit_project(reconciler.issues, reconciler.threads, project)
            except Exception as e:
                self.log.exception("Audit failed for project %s", name)
                await ctx.send(f"❌ Error auditing `{name}`: {e}")
                continue

            embed = discord.Embed(
                title=f"🔍 Sync Audit: {name}",
                color=discord.Color.green() if result.in_sync else discord.Color.orange(),
            )
            embed.add_field(name="Open issues with thread ids", value=str(len(result.open_tickets)), inline=True)
            embed.add_field(name="Managed threads found", value=str(result.managed_threads), inline=True)
            embed.add_field(name="Correctly unlocked", value=str(result.correctly_unlocked), inline=True)
            if result.in_sync:
                embed.description = "✅ All managed threads are properly synced!"
            if result.wrong_state:
                embed.add_field(
                    name="⚠️ Threads with incorrect state",
                    value="\n".join(f"<#{tid}> ({tname}) - {why}" for tid, tname, why in result.wrong_state[:10]),
                    inline=False,
                )
            if result.missing:
                value = f"{len(result.missing)} open issues reference missing or archived threads"
                if len(result.missing) <= 5:
                    value += "\n" + "\n".join(f"[#{t.number}]({t.url}): {t.title}" for t in result.missing)
                embed.add_field(name="ℹ️ Missing threads", value=value, inline=False)
            await ctx.send(embed=embed)

    @issuebridge.command(name="tickets")
    async def issuebridge_tickets(self, ctx: commands.Context, name: str) -> None:
        """List a project's issues that carry a thread id, with their state."""
        scheduler = await self._require_engine(ctx)
        if not scheduler:
            return
        projects = {pname: (project, error) for pname, project, error in await self._guild_projects(ctx.guild)}
        if name not in projects:
            await ctx.send(f"❌ No project named `{name}`.")
            return
        project, error = projects[name]
        if project is None:
            await ctx.send(f"❌ `{name}`: {error}")
            return

        try:
            async with ctx.typing():
                tickets = await list_linked_tickets(scheduler.reconciler.issues, project)
        except Exception as e:
            self.log.exception("Failed to list issues for project %s", name)
            await ctx.send(f"❌ Error listing issues for `{name}`: {e}")
            return

        open_count = sum(1 for t in tickets if t.state is TicketState.OPEN)
        embed = discord.Embed(title=f"🎫 Linked Issues: {project.full_repo}", color=COLOR_SUCCESS)
        embed.description = "\n".join(
            f"[#{t.number}]({t.url}) `{t.state.value}` {discord.utils.escape_markdown(t.title)[:80]}"
            for t in tickets[:10]
        ) or "No issues with thread ids."
        if len(tickets) > 10:
            embed.description += f"\n... and {len(tickets) - 10} more"
        embed.set_footer(text=f"{len(tickets)} linked issues, {open_count} open")
        await ctx.send(embed=embed)

    @issuebridge.command(name="archivelocked")
    async def issuebridge_archivelocked(self, ctx: commands.Context) -> None:
        """Archive managed threads that are locked but were left unarchived."""
        scheduler = await self._require_engine(ctx)
        if not scheduler:
            return
        reconciler = scheduler.reconciler

        lines = []
        for name, project, error in await self._guild_projects(ctx.guild):
            if project is None:
                lines.append(f"❌ `{name}`: {error}")
                continue
            try:
                async with ctx.typing():
                    archived = await archive_locked_threads(
                        reconciler.threads, reconciler.forum, project, reconciler.settings
                    )
            except Exception as e:
                self.log.exception("Archiving locked threads failed for project %s", name)
                lines.append(f"❌ `{name}`: {e}")
                continue
            lines.append(f"✅ `{name}`: archived {len(archived)} locked threads")
        await ctx.send("\n".join(lines) or "❌ No projects configured in this server.")
