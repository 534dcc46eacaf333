"""
Digest pipeline orchestrator for Fieldnote.
Coordinates the full flow from Slack history to delivered drafts.
"""
import logging
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slack_sdk.web.async_client import AsyncWebClient

from fieldnote.config import Settings
from fieldnote.database import Database, get_database
from fieldnote.exceptions import DeliveryError
from fieldnote.models import (
    ConversationTurn,
    DigestResult,
    DigestState,
    ExtractedInsight,
    InsightBundle,
    InsightStatus,
    Platform,
    Profile,
)
from fieldnote.services.extractor import InsightExtractor, format_conversation
from fieldnote.services.fetcher import ConversationFetcher
from fieldnote.services.generator import PostGenerator
from fieldnote.services.llm import LLMClient, get_llm
from fieldnote.services.notifier import (
    Notifier,
    NO_NEW_MESSAGES_NOTICE,
    NO_INSIGHTS_NOTICE,
    FAILURE_NOTICE,
)
from fieldnote.services.profiles import ProfileStore
from fieldnote.services.run_tracker import RunTracker

logger = logging.getLogger(__name__)


def _local_date(tz_name: str) -> date:
    try:
        return datetime.now(ZoneInfo(tz_name)).date()
    except (ZoneInfoNotFoundError, ValueError):
        return datetime.now(timezone.utc).date()


class DigestPipeline:
    """
    Runs one digest for one owner.

    Flow:
    1. Resolve the message window
    2. Fetch new turns
    3. Extract insights
    4. Generate and store drafts per insight (failures isolated)
    5. Deliver the bundle
    6. Record the run

    Every terminal state sends the owner exactly one DM.
    """

    def __init__(
        self,
        channel_ids: list[str],
        db: Database,
        run_tracker: RunTracker,
        fetcher: ConversationFetcher,
        extractor: InsightExtractor,
        profiles: ProfileStore,
        generator: PostGenerator,
        notifier: Notifier
    ):
        self.channel_ids = channel_ids
        self.db = db
        self.run_tracker = run_tracker
        self.fetcher = fetcher
        self.extractor = extractor
        self.profiles = profiles
        self.generator = generator
        self.notifier = notifier

    async def run(self, owner_external_id: str) -> DigestResult:
        """Run the digest. Never raises; failures come back as a result."""
        owner = owner_external_id
        state = DigestState.IDLE
        notified = False
        logger.info(f"Starting Fieldnote digest for {owner}")

        # Steps 1-3: any failure here leaves the window untouched
        try:
            window = self.run_tracker.resolve_window(owner)
            state = self._advance(owner, DigestState.WINDOW_RESOLVED)

            turns = await self.fetcher.fetch(self.channel_ids, window.lower_bound_token)
            state = self._advance(owner, DigestState.FETCHED)

            if not turns:
                await self._notify(owner, NO_NEW_MESSAGES_NOTICE)
                notified = True
                self.run_tracker.record_run(owner, turns, 0)
                return self._finish(owner, DigestState.NO_MESSAGES, turns)

            insights = await self.extractor.extract(format_conversation(turns))
            if not insights:
                await self._notify(
                    owner,
                    NO_INSIGHTS_NOTICE.format(message_count=len(turns))
                )
                notified = True
                self.run_tracker.record_run(owner, turns, 0)
                return self._finish(owner, DigestState.NO_INSIGHTS, turns)
            state = self._advance(owner, DigestState.EXTRACTED)

            profile = self.profiles.get_or_create(owner)
        except Exception as e:
            logger.error(f"Fieldnote digest for {owner} failed in state {state.value}: {e}")
            if not notified:
                await self._notify(owner, FAILURE_NOTICE)
            return DigestResult(
                state=DigestState.FAILED,
                success=False,
                error=str(e) or type(e).__name__
            )

        # Step 4: one insight at a time, failures isolated
        bundles: list[InsightBundle] = []
        for insight in insights:
            bundle = await self._process_insight(profile, insight)
            if bundle is not None:
                bundles.append(bundle)

        try:
            if not bundles:
                logger.warning(f"No posts generated for {owner} despite "
                               f"{len(insights)} insight(s)")
                self.run_tracker.record_run(owner, turns, 0)
                await self._notify(owner, FAILURE_NOTICE)
                return self._finish(
                    owner, DigestState.RUN_RECORDED, turns,
                    success=False, error="Failed to generate posts"
                )
            state = self._advance(owner, DigestState.POSTS_GENERATED)

            # Steps 5-6
            try:
                await self.notifier.send_bundle(owner, bundles)
            except DeliveryError as e:
                logger.error(f"Failed to deliver digest to {owner}: {e}")
                # The turns were consumed even though delivery failed
                self.run_tracker.record_run(owner, turns, len(bundles))
                await self._notify(owner, FAILURE_NOTICE)
                return self._finish(
                    owner, DigestState.FAILED, turns, bundles,
                    success=False, error="delivery failed"
                )
            state = self._advance(owner, DigestState.DELIVERED)

            # Delivered turns are consumed even if marking them sent fails
            self.run_tracker.record_run(owner, turns, len(bundles))

            for bundle in bundles:
                self.db.update_insight_status(bundle.insight.id, InsightStatus.SENT)
        except Exception as e:
            logger.error(f"Fieldnote digest for {owner} failed in state {state.value}: {e}")
            if state is not DigestState.DELIVERED:
                await self._notify(owner, FAILURE_NOTICE)
            return self._finish(
                owner, DigestState.FAILED, turns, bundles,
                success=False, error=str(e) or type(e).__name__
            )

        return self._finish(owner, DigestState.RUN_RECORDED, turns, bundles)

    async def _process_insight(
        self,
        profile: Profile,
        insight: ExtractedInsight
    ) -> Optional[InsightBundle]:
        """Store an insight with both drafts. Returns None on failure."""
        try:
            stored = self.db.create_insight(
                profile.id,
                insight,
                _local_date(profile.timezone)
            )

            posts = await self.generator.generate(insight, profile)

            x_draft = self.db.create_draft(stored.id, Platform.X, posts.short_form)
            linkedin_draft = self.db.create_draft(stored.id, Platform.LINKEDIN, posts.long_form)

            self.db.update_insight_status(stored.id, InsightStatus.POSTS_GENERATED)
            stored = stored.model_copy(update={"status": InsightStatus.POSTS_GENERATED})

            logger.info(f"Generated posts for insight: {insight.topic}")
            return InsightBundle(
                insight=stored,
                short_draft=x_draft,
                long_draft=linkedin_draft
            )
        except Exception as e:
            logger.error(f"Failed to process insight '{insight.topic}': {e}")
            return None

    async def _notify(self, owner: str, text: str) -> bool:
        try:
            await self.notifier.send_plain_notice(owner, text)
            return True
        except DeliveryError as e:
            logger.error(f"Failed to send notice to {owner}: {e}")
            return False

    def _advance(self, owner: str, state: DigestState) -> DigestState:
        logger.debug(f"Digest for {owner}: {state.value}")
        return state

    def _finish(
        self,
        owner: str,
        state: DigestState,
        turns: list[ConversationTurn],
        bundles: Optional[list[InsightBundle]] = None,
        success: bool = True,
        error: Optional[str] = None
    ) -> DigestResult:
        result = DigestResult(
            state=state,
            success=success,
            message_count=len(turns),
            insight_count=len(bundles or []),
            error=error
        )
        logger.info(f"Fieldnote digest for {owner} finished: {state.value} "
                    f"({result.message_count} messages, {result.insight_count} insights)")
        return result


def build_pipeline(
    settings: Settings,
    slack_client: AsyncWebClient,
    db: Optional[Database] = None,
    llm: Optional[LLMClient] = None
) -> DigestPipeline:
    """Wire a pipeline around one Slack client."""
    db = db or get_database()
    llm = llm or get_llm()

    return DigestPipeline(
        channel_ids=settings.channel_ids,
        db=db,
        run_tracker=RunTracker(db, max_hours_back=settings.max_hours_back),
        fetcher=ConversationFetcher(slack_client),
        extractor=InsightExtractor(llm),
        profiles=ProfileStore(db, settings.default_timezone, llm),
        generator=PostGenerator(llm, mode=settings.post_generation_mode),
        notifier=Notifier(slack_client)
    )
