"""
The moderation core. Nothing in here talks to Discord directly.

- **permissions.py**: Authority tiers, the role ladder and the pure
  ``authorize`` check.
- **record_store.py**: Per-user warnings.
- **case_ledger.py**: Append-only audit trail with a durable id counter.
- **acknowledgement.py**: In-memory acknowledgement workflows and the
  ``ack_<caseId>_<0|1>`` button id codec.
- **orchestrator.py**: Runs each command through authorization, platform
  effect, case write and follow-up workflow.
- **platform.py**: The protocol the orchestrator drives; implemented by
  :mod:`modledger.bot.discord_platform`.
- **errors.py**: ``ModerationError`` and its subclasses.
"""
