"""Read-side view of the current round for interactive clients."""

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from .chain.client import LedgerClient, LedgerError
from .models.view import ViewSnapshot
from .timer import derive_timing

logger = logging.getLogger(__name__)


class ViewAggregator:
    """Polls the contract and keeps the latest presentable snapshot.

    Never submits transactions. A failed poll keeps the previous values
    and marks the snapshot stale instead of clearing it; a start time is
    never invented when the read fails.
    """

    def __init__(self, client: LedgerClient, clock: Callable[[], float] = time.time):
        self.client = client
        self.clock = clock
        self.snapshot = ViewSnapshot()

    def poll(self) -> ViewSnapshot:
        """Refresh the snapshot from a fresh read.

        Returns:
            The new snapshot, or the previous one marked stale when the read
            fails or is behind the displayed round
        """
        try:
            state = self.client.read_round_state()
        except LedgerError as e:
            logger.warning(f"View refresh failed, keeping previous snapshot: {e}")
            self.snapshot = self.snapshot.model_copy(update={"stale": True, "last_error": str(e)})
            return self.snapshot

        previous_round = self.snapshot.round_id
        if previous_round is not None and state.round_id < previous_round:
            error = f"read round {state.round_id} behind displayed round {previous_round}"
            logger.warning(f"View refresh ignored: {error}")
            self.snapshot = self.snapshot.model_copy(update={"stale": True, "last_error": error})
            return self.snapshot

        now = self.clock()
        timing = derive_timing(state, int(now))
        last_result = state.last_result
        self.snapshot = ViewSnapshot(
            round_id=state.round_id,
            phase=timing.phase,
            deadline=timing.deadline,
            remaining=timing.remaining,
            pool_balance=state.pool_balance,
            participant_count=state.participant_count,
            last_resolved_round_id=last_result.round_id if last_result is not None else None,
            last_result=last_result,
            refreshed_at=datetime.fromtimestamp(now, timezone.utc),
        )
        return self.snapshot
