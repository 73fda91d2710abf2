"""
SQL repositories. Each class holds static coroutines taking an open
aiosqlite connection; transactions are owned by the caller.

- **warning_repo.py**: ``warnings`` table.
- **case_repo.py**: ``cases`` table and the ``ledger_state`` counter.
- **pending_unban_repo.py**: ``pending_unbans`` table (tempban expiries).
"""
