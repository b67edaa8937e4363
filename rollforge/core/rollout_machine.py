"""Deterministic rollout state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Terminal states (Stable, Failed, TimedOut) are final
- Every transition recorded in the run ledger, with its details
"""

from __future__ import annotations

import logging
from typing import Any

from rollforge.core.run_ledger import RunLedger
from rollforge.models.deployment import VALID_TRANSITIONS, RolloutState
from rollforge.models.ledger import LedgerEntry

logger = logging.getLogger(__name__)

_START = "start"


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RolloutMachine:
    """Tracks the state of rollout runs and records every transition.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger
        # In-memory cache: run_id -> (environment, state)
        self._states: dict[str, tuple[str, RolloutState]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def start(
        self, run_id: str, environment: str, details: dict[str, Any] | None = None
    ) -> LedgerEntry:
        """Enter ``Initiated`` for a new run."""
        if run_id in self._states or self._ledger.get_latest(run_id) is not None:
            raise InvalidTransitionError(f"Run {run_id} already exists")
        entry = self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                environment=environment,
                state_transition=f"{_START}->{RolloutState.INITIATED.value}",
                details=details or {},
            )
        )
        self._states[run_id] = (environment, RolloutState.INITIATED)
        logger.info("Run %s initiated for environment %s", run_id, environment)
        return entry

    def get_current_state(self, run_id: str) -> RolloutState:
        """Return the current state of a run (rebuilt from the ledger if needed)."""
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return self._states[run_id][1]

    def _rebuild_state(self, run_id: str) -> None:
        entries = self._ledger.get_run_entries(run_id)
        if not entries:
            raise KeyError(f"Unknown run {run_id}")
        latest = entries[-1]
        self._states[run_id] = (latest.environment, RolloutState(latest.to_state))

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        target_state: RolloutState,
        details: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Move a run to *target_state*, recording the transition.

        Returns the sealed LedgerEntry.
        """
        current = self.get_current_state(run_id)
        environment = self._states[run_id][0]

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition run {run_id} from {current.value} to "
                f"{target_state.value}. Allowed: {sorted(s.value for s in allowed)}"
            )

        entry = self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                environment=environment,
                state_transition=f"{current.value}->{target_state.value}",
                details=details or {},
            )
        )
        self._states[run_id] = (environment, target_state)
        logger.info(
            "Run %s: %s -> %s", run_id, current.value, target_state.value
        )
        return entry

    def fail(
        self,
        run_id: str,
        target_state: RolloutState,
        details: dict[str, Any] | None = None,
    ) -> LedgerEntry | None:
        """Record a terminal failure unless the run is already terminal."""
        if self.get_current_state(run_id).is_terminal:
            return None
        return self.transition(run_id, target_state, details)

    def get_available_transitions(self, run_id: str) -> set[RolloutState]:
        """Return the set of valid target states for a run."""
        return set(VALID_TRANSITIONS.get(self.get_current_state(run_id), set()))
