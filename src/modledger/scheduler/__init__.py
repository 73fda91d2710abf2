"""
Scheduled execution of time-delayed moderation actions.

- **unban_scheduler.py**: Lifts tempbans when they expire. Entries are
  persisted before they are armed and re-armed on startup, support
  cancellation by case id, and are processed by a min-heap runner task.
"""
