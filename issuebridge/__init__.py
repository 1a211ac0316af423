"""
IssueBridge cog: keeps Discord forum threads and their GitHub issues in step.
"""

__red_end_user_data_statement__ = (
    "This cog stores no personal data. It reads thread names and the bot's own "
    "messages in configured forums to find linked GitHub issues."
)


async def setup(bot) -> None:
    # Red is only required when loaded as a cog
    from .issuebridge import IssueBridge

    await bot.add_cog(IssueBridge(bot))
