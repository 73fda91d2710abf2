"""
Plain data records shared by the stores, the orchestrator and the UI.

- **case_datatypes.py**: CaseAction, Case, WarningRecord and PendingUnban.
"""
