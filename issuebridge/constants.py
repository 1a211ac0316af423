"""
Shared constants for the IssueBridge cog.
"""

# Newest messages inspected per thread when looking for an issue link
DISCORD_MESSAGE_FETCH_LIMIT = 50

# Threads are only managed when their name starts with one of these
DEFAULT_THREAD_PREFIXES = ["[BUG]", "[FEATURE]", "[QUESTION]", "[FEEDBACK]"]

DEFAULT_SYNC_INTERVAL = 60
MIN_SYNC_INTERVAL = 10

# Embed titles posted by the issue command; discovery looks for these
MSG_ISSUE_CREATED = "GitHub Issue Created"
MSG_ISSUE_UPDATED = "GitHub Issue Updated"
ISSUE_LINK_EMBED_TITLES = frozenset({MSG_ISSUE_CREATED, MSG_ISSUE_UPDATED})

MSG_ISSUE_CLOSED = "🔒 Issue closed or merged on GitHub"
MSG_ISSUE_REOPENED = "🔓 Issue reopened on GitHub"

COLOR_SUCCESS = 0x238636
