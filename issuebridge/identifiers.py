from typing import Optional, Tuple
import re


THREAD_ID_RE = re.compile(r"\[([0-9]+)\]")
ISSUE_URL_RE = re.compile(r"https://github\.com/([\w.-]+)/([\w.-]+)/issues/([0-9]+)(?![\w/])")

U64_MAX = 2**64 - 1


def encode_thread_id(thread_id: int) -> str:
    if thread_id < 0 or thread_id > U64_MAX:
        raise ValueError(f"Thread id out of range: {thread_id}")
    return f"[{thread_id}]"


def build_issue_title(title: str, thread_id: int) -> str:
    return f"{title} {encode_thread_id(thread_id)}"


def decode_thread_id(title: str) -> Optional[int]:
    """
    Return the thread id embedded in an issue title.

    Only the first bracketed run of ASCII digits counts. Titles without one,
    or whose first run does not fit in 64 bits, carry no identifier.
    """
    if not title:
        return None
    m = THREAD_ID_RE.search(title)
    if not m:
        return None
    value = int(m.group(1))
    if value > U64_MAX:
        return None
    return value


def extract_issue_url(text: str) -> Optional[str]:
    if not text:
        return None
    m = ISSUE_URL_RE.search(text)
    if m:
        return m.group(0)
    return None


def parse_issue_url(url: str) -> Optional[Tuple[str, str, int]]:
    """Split an issue URL into (owner, repo, number)."""
    if not url:
        return None
    m = ISSUE_URL_RE.fullmatch(url.strip())
    if not m:
        return None
    return m.group(1), m.group(2), int(m.group(3))
