"""
Embed builders for case mirrors, acknowledgement prompts, warning lists and
event-log entries.
"""
