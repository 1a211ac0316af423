"""
Value types for the IssueBridge cog.

Everything here is rebuilt at the start of a sync cycle and thrown away at its end.
Only `Project` is derived from stored configuration.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .constants import DEFAULT_SYNC_INTERVAL, DEFAULT_THREAD_PREFIXES


class ProjectConfigError(ValueError):
    """Raised when a stored project entry cannot be turned into a `Project`."""


class TicketState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"

    @classmethod
    def parse(cls, value: Any) -> "TicketState":
        if isinstance(value, cls):
            return value
        text = str(value).lower()
        for member in cls:
            if member.value == text:
                return member
        raise ValueError(f"Unknown issue state: {value!r}")


def _parse_snowflake(value: Any, what: str) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ProjectConfigError(f"Invalid {what}: {value!r}") from None
    if parsed <= 0:
        raise ProjectConfigError(f"Invalid {what}: {value!r}")
    return parsed


@dataclass(frozen=True)
class Project:
    """
    One forum <-> repository pairing.

    Ids are parsed from the stored strings, so a malformed entry surfaces as a
    `ProjectConfigError` when the project is loaded for a cycle.
    """

    name: str
    github_owner: str
    github_repo: str
    guild_id: int
    forum_id: int
    allowed_role_id: Optional[int] = None

    @property
    def full_repo(self) -> str:
        return f"{self.github_owner}/{self.github_repo}"

    @classmethod
    def from_config(cls, name: str, guild_id: Any, data: Dict[str, Any]) -> "Project":
        if not isinstance(data, dict):
            raise ProjectConfigError(f"Project {name!r} is not a mapping: {data!r}")
        owner = data.get("github_owner") or ""
        repo = data.get("github_repo") or ""
        if not isinstance(owner, str) or not isinstance(repo, str):
            raise ProjectConfigError(f"Project {name!r} has an invalid GitHub repository: {owner!r}/{repo!r}")
        owner, repo = owner.strip(), repo.strip()
        if not owner or not repo:
            raise ProjectConfigError(f"Project {name!r} has no GitHub repository set")
        role = data.get("allowed_role_id")
        return cls(
            name=name,
            github_owner=owner,
            github_repo=repo,
            guild_id=_parse_snowflake(guild_id, "guild id"),
            forum_id=_parse_snowflake(data.get("forum_id"), "forum id"),
            allowed_role_id=_parse_snowflake(role, "role id") if role else None,
        )

    def to_config(self) -> Dict[str, Any]:
        return {
            "github_owner": self.github_owner,
            "github_repo": self.github_repo,
            "forum_id": str(self.forum_id),
            "allowed_role_id": str(self.allowed_role_id) if self.allowed_role_id else None,
        }


@dataclass(frozen=True)
class SyncSettings:
    enabled: bool = True
    interval_seconds: int = DEFAULT_SYNC_INTERVAL
    thread_prefixes: Tuple[str, ...] = tuple(DEFAULT_THREAD_PREFIXES)

    def has_managed_prefix(self, thread_name: str) -> bool:
        return any(thread_name.startswith(prefix) for prefix in self.thread_prefixes)


@dataclass(frozen=True)
class ExternalTicket:
    number: int
    title: str
    state: TicketState
    url: str


@dataclass(frozen=True)
class ThreadRecord:
    id: int
    parent_id: Optional[int]
    name: str
    locked: bool = False
    archived: bool = False


@dataclass(frozen=True)
class EmbedRecord:
    title: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class MessageRecord:
    author_id: int
    content: str = ""
    embeds: Tuple[EmbedRecord, ...] = ()


@dataclass(frozen=True)
class DiscoveredLink:
    thread_id: int
    number: int
    url: str


@dataclass
class ProjectReport:
    """Counters for one project's cycle. Logged, and shown by the manual sync command."""

    project: str
    open_tickets: int = 0
    threads_present: int = 0
    threads_missing: int = 0
    ambiguous_ids: List[int] = field(default_factory=list)
    reopened: List[int] = field(default_factory=list)
    closed: List[int] = field(default_factory=list)
    failures: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
