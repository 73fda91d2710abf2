"""
Utility functions and helpers for Modledger.

- **logger.py**: Centralized logging configuration with colored console output
  through prompt_toolkit, a rotating per-session log file, and suppression of
  noisy library loggers (Discord internals, aiosqlite, aiohttp).
"""
