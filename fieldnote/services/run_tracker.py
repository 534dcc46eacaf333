"""
Digest run tracking for Fieldnote.
Decides which messages a run may look at and remembers what it consumed.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging

from fieldnote.database import Database
from fieldnote.models import (
    ConversationTurn,
    RunRecord,
    Window,
    datetime_to_token,
    max_token,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunTracker:
    """
    Tracks the newest message each owner has already had analyzed.

    Window policy:
    - Lower bound is the newest token of the owner's last run (exclusive)
    - Never reaches further back than `max_hours_back`
    - Empty runs never move the bound
    """

    def __init__(
        self,
        db: Database,
        max_hours_back: int = 24,
        now: Callable[[], datetime] = _utcnow
    ):
        self.db = db
        self.max_hours_back = max_hours_back
        self._now = now

    def fallback_token(self) -> str:
        """Token for `max_hours_back` hours ago."""
        return datetime_to_token(self._now() - timedelta(hours=self.max_hours_back))

    def resolve_window(self, owner_external_id: str) -> Window:
        """Work out the exclusive lower bound for the owner's next fetch."""
        last_run = self.db.get_latest_run(owner_external_id)
        fallback = self.fallback_token()

        if last_run is None:
            logger.info(f"First digest run for {owner_external_id}, "
                        f"fetching last {self.max_hours_back}h")
            return Window(lower_bound_token=fallback, is_first_run=True)

        effective = max_token(last_run.newest_turn_token, fallback)
        if effective != last_run.newest_turn_token:
            logger.info(f"Capping window for {owner_external_id} "
                        f"to {self.max_hours_back}h back")
        else:
            logger.info(f"Resuming {owner_external_id} after token {effective}")

        return Window(lower_bound_token=effective, is_first_run=False)

    def record_run(
        self,
        owner_external_id: str,
        turns: list[ConversationTurn],
        insight_count: int
    ) -> Optional[RunRecord]:
        """
        Record that `turns` were consumed.

        No-op for an empty batch. `turns` are sorted ascending, so the
        last one carries the newest token.
        """
        if not turns:
            return None

        newest = turns[-1].sequence_token
        last_run = self.db.get_latest_run(owner_external_id)
        if last_run is not None:
            newest = max_token(newest, last_run.newest_turn_token)

        record = self.db.create_run(
            owner_external_id=owner_external_id,
            newest_turn_token=newest,
            turn_count=len(turns),
            insight_count=insight_count
        )
        logger.info(f"Recorded digest run for {owner_external_id}: "
                    f"{len(turns)} messages, {insight_count} insights, "
                    f"newest={newest}")
        return record
