"""
Supabase database client and operations for Fieldnote.
"""
from supabase import create_client, Client
from postgrest.exceptions import APIError
from datetime import date
from typing import Any, Optional
import logging

from fieldnote.config import get_settings
from fieldnote.exceptions import StoreError
from fieldnote.models import (
    StoredMessage,
    ExtractedInsight,
    Insight,
    InsightStatus,
    Profile,
    Platform,
    Draft,
    DraftStatus,
    RunRecord,
)

logger = logging.getLogger(__name__)

# Postgres unique_violation
DUPLICATE_KEY_CODE = "23505"


class Database:
    """Database operations using Supabase."""

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            settings = get_settings()
            client = create_client(
                settings.supabase_url,
                settings.supabase_key
            )
        self.client: Client = client

    def _execute(self, query, action: str) -> list[dict]:
        """Run a query, turning transport and API failures into StoreError."""
        try:
            result = query.execute()
        except Exception as e:
            logger.error(f"Failed to {action}: {e}")
            raise StoreError(f"Failed to {action}") from e
        return result.data or []

    # ========================================================
    # Messages
    # ========================================================

    def save_message(self, message: StoredMessage) -> Optional[dict]:
        """
        Save an ingested message.

        Returns None when the message was already stored.
        """
        data = message.model_dump(exclude={"id"})
        try:
            result = self.client.table("messages").insert(data).execute()
        except APIError as e:
            if e.code == DUPLICATE_KEY_CODE:
                logger.debug(f"Message already exists: {message.slack_ts}")
                return None
            logger.error(f"Failed to store message: {e}")
            raise StoreError("Failed to store message") from e
        return result.data[0] if result.data else {}

    # ========================================================
    # Profiles
    # ========================================================

    def get_profile_by_user(self, external_user_id: str) -> Optional[Profile]:
        """Get the profile for a Slack user, if one exists."""
        rows = self._execute(
            self.client.table("profiles")
                .select("*")
                .eq("external_user_id", external_user_id)
                .limit(1),
            "fetch profile"
        )
        return Profile(**rows[0]) if rows else None

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        """Get a profile by its database ID."""
        rows = self._execute(
            self.client.table("profiles").select("*").eq("id", profile_id),
            "fetch profile"
        )
        return Profile(**rows[0]) if rows else None

    def create_profile(self, external_user_id: str, timezone: str) -> Profile:
        """Create a profile with empty personalization."""
        data = {
            "external_user_id": external_user_id,
            "writing_tone": None,
            "stylistic_rules": [],
            "banned_phrases": [],
            "interests": [],
            "timezone": timezone,
        }
        rows = self._execute(
            self.client.table("profiles").insert(data),
            "create profile"
        )
        return Profile(**rows[0])

    def update_profile(
        self,
        external_user_id: str,
        updates: dict[str, Any]
    ) -> Profile:
        """Apply field updates to a user's profile."""
        rows = self._execute(
            self.client.table("profiles")
                .update(updates)
                .eq("external_user_id", external_user_id),
            "update profile"
        )
        if not rows:
            raise StoreError(f"No profile for user {external_user_id}")
        return Profile(**rows[0])

    # ========================================================
    # Insights
    # ========================================================

    def create_insight(
        self,
        owner_profile_id: str,
        insight: ExtractedInsight,
        insight_date: date
    ) -> Insight:
        """Store a freshly extracted insight as pending."""
        data = {
            "owner_profile_id": owner_profile_id,
            "insight_date": insight_date.isoformat(),
            "topic": insight.topic,
            "core_insight": insight.core_insight,
            "supporting_context": insight.supporting_context,
            "status": InsightStatus.PENDING.value,
        }
        rows = self._execute(
            self.client.table("insights").insert(data),
            "store insight"
        )
        return Insight(**rows[0])

    def get_insight(self, insight_id: str) -> Optional[Insight]:
        rows = self._execute(
            self.client.table("insights").select("*").eq("id", insight_id),
            "fetch insight"
        )
        return Insight(**rows[0]) if rows else None

    def update_insight_status(
        self,
        insight_id: str,
        status: InsightStatus
    ) -> None:
        self._execute(
            self.client.table("insights")
                .update({"status": status.value})
                .eq("id", insight_id),
            "update insight status"
        )

    # ========================================================
    # Drafts
    # ========================================================

    def create_draft(
        self,
        insight_id: str,
        platform: Platform,
        content: str
    ) -> Draft:
        """Store a generated draft."""
        data = {
            "insight_id": insight_id,
            "platform": platform.value,
            "content": content,
            "char_count": len(content),
            "status": DraftStatus.DRAFT.value,
        }
        rows = self._execute(
            self.client.table("drafts").insert(data),
            "store draft"
        )
        return Draft(**rows[0])

    def get_draft(self, draft_id: str) -> Optional[Draft]:
        rows = self._execute(
            self.client.table("drafts").select("*").eq("id", draft_id),
            "fetch draft"
        )
        return Draft(**rows[0]) if rows else None

    def get_drafts_for_insight(self, insight_id: str) -> list[Draft]:
        rows = self._execute(
            self.client.table("drafts").select("*").eq("insight_id", insight_id),
            "fetch drafts for insight"
        )
        return [Draft(**row) for row in rows]

    def update_draft_status(self, draft_id: str, status: DraftStatus) -> None:
        self._execute(
            self.client.table("drafts")
                .update({"status": status.value})
                .eq("id", draft_id),
            "update draft status"
        )

    def update_draft_content(self, draft_id: str, content: str) -> Draft:
        """Replace a draft's text after a user edit."""
        rows = self._execute(
            self.client.table("drafts")
                .update({
                    "content": content,
                    "char_count": len(content),
                    "status": DraftStatus.EDITED.value,
                })
                .eq("id", draft_id),
            "update draft content"
        )
        if not rows:
            raise StoreError(f"No draft {draft_id}")
        return Draft(**rows[0])

    # ========================================================
    # Digest Runs
    # ========================================================

    def get_latest_run(self, owner_external_id: str) -> Optional[RunRecord]:
        """Get the most recent digest run for an owner."""
        rows = self._execute(
            self.client.table("digest_runs")
                .select("*")
                .eq("owner_external_id", owner_external_id)
                .order("created_at", desc=True)
                .limit(1),
            "fetch latest digest run"
        )
        return RunRecord(**rows[0]) if rows else None

    def create_run(
        self,
        owner_external_id: str,
        newest_turn_token: str,
        turn_count: int,
        insight_count: int
    ) -> RunRecord:
        """Append a digest run record."""
        data = {
            "owner_external_id": owner_external_id,
            "newest_turn_token": newest_turn_token,
            "turn_count": turn_count,
            "insight_count": insight_count,
        }
        rows = self._execute(
            self.client.table("digest_runs").insert(data),
            "create digest run"
        )
        return RunRecord(**rows[0])


# Singleton instance
_db: Optional[Database] = None

def get_database() -> Database:
    """Get database singleton."""
    global _db
    if _db is None:
        _db = Database()
    return _db
