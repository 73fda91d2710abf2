"""
Discord integration for Modledger.

- **discord_platform.py**: py-cord implementation of the moderation platform
  (timeouts, kicks, bans, purges, DMs, acknowledgement threads, mod-log posts).
- **health.py**: aiohttp health endpoint served next to the bot.
- **cogs/**: Slash commands and event listeners.
"""
