"""
Pydantic models for Fieldnote.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from enum import Enum


# ============================================================
# Slack timestamp tokens
# ============================================================

def token_key(token: str) -> Decimal:
    """Numeric sort key for a Slack `ts` token."""
    try:
        return Decimal(token)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Not a valid Slack timestamp token: {token!r}")


def datetime_to_token(moment: datetime) -> str:
    """Convert a datetime into Slack's `seconds.micros` token format."""
    return f"{moment.timestamp():.6f}"


def max_token(a: str, b: str) -> str:
    """The later of two tokens in token order."""
    return a if token_key(a) >= token_key(b) else b


# ============================================================
# Message Models
# ============================================================

class ConversationTurn(BaseModel):
    """One chat message normalized for analysis."""
    author_id: str
    author_display_name: Optional[str] = None
    text: str
    sequence_token: str


class StoredMessage(BaseModel):
    """Message captured by the real-time ingestion path."""
    id: Optional[str] = None
    channel_id: str
    user_id: str
    user_name: Optional[str] = None
    text: str
    slack_ts: str


# ============================================================
# Insight Models
# ============================================================

class ExtractedInsight(BaseModel):
    """A learning the LLM pulled out of a conversation."""
    model_config = ConfigDict(frozen=True)

    topic: str
    core_insight: str
    supporting_context: str = ""


class InsightStatus(str, Enum):
    PENDING = "pending"
    POSTS_GENERATED = "posts_generated"
    SENT = "sent"
    IGNORED = "ignored"


class Insight(BaseModel):
    """An insight stored in DB."""
    id: str
    owner_profile_id: str
    insight_date: date
    topic: str
    core_insight: str
    supporting_context: Optional[str] = None
    status: InsightStatus = InsightStatus.PENDING
    created_at: Optional[datetime] = None


# ============================================================
# Profile Models
# ============================================================

class Profile(BaseModel):
    """Per-user personalization for post generation."""
    id: str
    external_user_id: str
    writing_tone: Optional[str] = None
    stylistic_rules: list[str] = Field(default_factory=list)
    banned_phrases: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    timezone: str = "America/Los_Angeles"


class StyleAnalysis(BaseModel):
    """Output from analyzing a user's sample posts."""
    writing_tone: Optional[str] = None
    stylistic_rules: list[str] = Field(default_factory=list)
    banned_phrases: list[str] = Field(default_factory=list)


# ============================================================
# Draft Models
# ============================================================

class Platform(str, Enum):
    X = "x"
    LINKEDIN = "linkedin"


class DraftStatus(str, Enum):
    DRAFT = "draft"
    VIEWED = "viewed"
    EDITED = "edited"
    PUBLISHED = "published"
    IGNORED = "ignored"


class Draft(BaseModel):
    """A platform-specific post stored in DB."""
    id: str
    insight_id: str
    platform: Platform
    content: str
    char_count: int
    status: DraftStatus = DraftStatus.DRAFT
    created_at: Optional[datetime] = None


class GeneratedPosts(BaseModel):
    """Both drafts generated for one insight."""
    short_form: str
    long_form: str


class InsightBundle(BaseModel):
    """One delivered entry: an insight with its two drafts."""
    insight: Insight
    short_draft: Draft
    long_draft: Draft


# ============================================================
# Run Tracking Models
# ============================================================

class RunRecord(BaseModel):
    """One completed digest run for an owner."""
    id: Optional[str] = None
    owner_external_id: str
    newest_turn_token: str
    turn_count: int
    insight_count: int
    created_at: Optional[datetime] = None


class Window(BaseModel):
    """Exclusive lower bound for the next fetch."""
    lower_bound_token: str
    is_first_run: bool


# ============================================================
# Pipeline Models
# ============================================================

class DigestState(str, Enum):
    IDLE = "idle"
    WINDOW_RESOLVED = "window_resolved"
    FETCHED = "fetched"
    NO_MESSAGES = "no_messages"
    EXTRACTED = "extracted"
    NO_INSIGHTS = "no_insights"
    POSTS_GENERATED = "posts_generated"
    DELIVERED = "delivered"
    RUN_RECORDED = "run_recorded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    DigestState.NO_MESSAGES,
    DigestState.NO_INSIGHTS,
    DigestState.RUN_RECORDED,
    DigestState.FAILED,
})


class DigestResult(BaseModel):
    """Outcome of one digest run, reported to the invoking surface."""
    state: DigestState
    success: bool
    message_count: int = 0
    insight_count: int = 0
    error: Optional[str] = None


# ============================================================
# Slack Interaction Models
# ============================================================

class ActionKind(str, Enum):
    VIEW_X = "view_x"
    VIEW_LINKEDIN = "view_linkedin"
    EDIT_DRAFT = "edit_draft"
    PUBLISH_DRAFT = "publish_draft"
    IGNORE_INSIGHT = "ignore_insight"


class Action(BaseModel):
    """A button click decoded into its kind and target record id."""
    kind: ActionKind
    payload: str

    @property
    def action_id(self) -> str:
        return f"{self.kind.value}:{self.payload}"

    @classmethod
    def decode(cls, action_id: str, value: Optional[str] = None) -> "Action":
        """Decode a Slack `action_id` (`kind:payload`) into an Action."""
        kind, _, payload = action_id.partition(":")
        return cls(kind=ActionKind(kind), payload=value or payload)
