"""Rollforge monitor: read-only Rich views over rollout results and the run ledger.

The monitor never holds state of its own; every view is rebuilt from a
``RolloutResult`` or by re-reading the ledger.
"""
