"""
Slack commands, actions and event handling for Fieldnote.
"""
from slack_bolt.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional

from fieldnote.config import Settings, get_settings
from fieldnote.database import Database, get_database
from fieldnote.exceptions import StoreError
from fieldnote.models import (
    Action,
    ActionKind,
    Draft,
    DraftStatus,
    InsightStatus,
    Platform,
    StoredMessage,
)
from fieldnote.services.generator import X_CHAR_LIMIT
from fieldnote.services.llm import LLMClient
from fieldnote.services.pipeline import DigestPipeline, build_pipeline

logger = logging.getLogger(__name__)

# Matches every action_id this app encodes as `kind:payload`
ACTION_PATTERN = re.compile(
    r"^(" + "|".join(kind.value for kind in ActionKind) + r"):"
)

STYLE_SAMPLE_BLOCKS = ("post_1", "post_2", "post_3")

GENERIC_ERROR = "Something went wrong. Please try again."


class SlackBot:
    """
    Slack bot for Fieldnote.

    Features:
    - /fieldnote runs a digest and DMs the results
    - /fieldnote style learns the user's writing style
    - Buttons to view, edit, publish or ignore drafts
    - Stores messages from configured channels
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        db: Optional[Database] = None,
        llm: Optional[LLMClient] = None,
        app: Optional[AsyncApp] = None
    ):
        self.settings = settings or get_settings()
        self.db = db or get_database()
        self.app = app or AsyncApp(
            token=self.settings.slack_bot_token,
            signing_secret=self.settings.slack_signing_secret
        )
        self.pipeline: DigestPipeline = build_pipeline(
            self.settings, self.app.client, db=self.db, llm=llm
        )
        self.profiles = self.pipeline.profiles

        # Keep references so background digests are not garbage collected
        self._tasks: set[asyncio.Task] = set()

        self._action_handlers: dict[ActionKind, Callable[..., Awaitable[None]]] = {
            ActionKind.VIEW_X: self._view_draft,
            ActionKind.VIEW_LINKEDIN: self._view_draft,
            ActionKind.EDIT_DRAFT: self._open_edit_modal,
            ActionKind.PUBLISH_DRAFT: self._publish_draft,
            ActionKind.IGNORE_INSIGHT: self._ignore_insight,
        }

        self._register_handlers()

    def _register_handlers(self):
        """Register all Slack listeners."""
        self.app.command("/fieldnote")(self._handle_command)
        self.app.action(ACTION_PATTERN)(self._handle_action)
        self.app.view("learn_style")(self._handle_style_submission)
        self.app.view("edit_draft")(self._handle_edit_submission)
        self.app.event("message")(self._handle_message)

    # ========================================================
    # Slash command
    # ========================================================

    async def _handle_command(self, ack, command: dict, client):
        """Handle /fieldnote and /fieldnote style."""
        await ack()

        user_id = command["user_id"]
        channel_id = command.get("channel_id")
        subcommand = (command.get("text") or "").strip().lower()
        logger.info(f"Fieldnote command from {user_id}: '{subcommand}'")

        if subcommand == "style":
            try:
                await client.views_open(
                    trigger_id=command["trigger_id"],
                    view=self._style_modal()
                )
            except SlackApiError as e:
                logger.error(f"Failed to open style modal for {user_id}: {e}")
            return

        try:
            await client.chat_postEphemeral(
                channel=channel_id,
                user=user_id,
                text="Analyzing your conversations... You'll receive a DM "
                     "shortly with any insights found."
            )
        except SlackApiError as e:
            # The DM still arrives without the ephemeral heads-up
            logger.warning(f"Failed to send ephemeral message: {e}")

        self.start_digest(user_id)

    def start_digest(self, user_id: str) -> asyncio.Task:
        """Run a digest in the background."""
        task = asyncio.create_task(self.run_digest(user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_digest(self, user_id: str):
        result = await self.pipeline.run(user_id)
        if result.success:
            logger.info(f"Digest for {user_id} completed: {result.state.value}")
        else:
            logger.warning(f"Digest for {user_id} reported failure: "
                           f"{result.state.value} ({result.error})")
        return result

    # ========================================================
    # Button actions
    # ========================================================

    async def _handle_action(self, ack, body: dict, action: dict, client, respond):
        """Decode a button click once and dispatch on its kind."""
        await ack()

        try:
            decoded = Action.decode(action["action_id"], action.get("value"))
        except ValueError:
            logger.warning(f"Unknown action: {action.get('action_id')}")
            return

        handler = self._action_handlers[decoded.kind]
        try:
            await handler(decoded, body, client, respond)
        except (StoreError, SlackApiError) as e:
            logger.error(f"Error handling {decoded.kind.value} for {decoded.payload}: {e}")
            await self._reply(body, client, respond, GENERIC_ERROR)

    async def _view_draft(self, action: Action, body: dict, client, respond):
        draft = self.db.get_draft(action.payload)
        if draft is None:
            logger.warning(f"Draft not found for {action.kind.value}: {action.payload}")
            return

        if draft.status == DraftStatus.DRAFT:
            self.db.update_draft_status(draft.id, DraftStatus.VIEWED)

        await self._open_view(client, body, self._draft_modal(draft))
        logger.info(f"{draft.platform.value} draft viewed: {draft.id}")

    async def _open_edit_modal(self, action: Action, body: dict, client, respond):
        draft = self.db.get_draft(action.payload)
        if draft is None:
            logger.warning(f"Draft not found for edit: {action.payload}")
            return
        await self._open_view(client, body, self._edit_modal(draft))

    async def _publish_draft(self, action: Action, body: dict, client, respond):
        self.db.update_draft_status(action.payload, DraftStatus.PUBLISHED)
        logger.info(f"Draft marked published: {action.payload}")
        await self._reply(body, client, respond, "Nice! Marked as published.")

    async def _ignore_insight(self, action: Action, body: dict, client, respond):
        self.db.update_insight_status(action.payload, InsightStatus.IGNORED)
        for draft in self.db.get_drafts_for_insight(action.payload):
            self.db.update_draft_status(draft.id, DraftStatus.IGNORED)
        logger.info(f"Insight ignored: {action.payload}")
        await self._reply(body, client, respond, "Got it! This insight has been ignored.")

    async def _open_view(self, client, body: dict, view: dict):
        """Open a modal, stacking it when the click came from a modal."""
        if body.get("view"):
            await client.views_push(trigger_id=body["trigger_id"], view=view)
        else:
            await client.views_open(trigger_id=body["trigger_id"], view=view)

    async def _reply(self, body: dict, client, respond, text: str):
        """Ephemeral reply in place, or a DM when the click came from a modal."""
        if body.get("response_url"):
            await respond(text=text, replace_original=False, response_type="ephemeral")
        else:
            await client.chat_postMessage(channel=body["user"]["id"], text=text)

    # ========================================================
    # Modal submissions
    # ========================================================

    async def _handle_style_submission(self, ack, body: dict, view: dict, client):
        """Learn the user's style from the pasted sample posts."""
        await ack()

        user_id = body["user"]["id"]
        values = view["state"]["values"]
        samples = [
            values.get(block, {}).get("post_input", {}).get("value") or ""
            for block in STYLE_SAMPLE_BLOCKS
        ]

        try:
            profile = await self.profiles.learn_style(user_id, samples)
        except Exception as e:
            logger.error(f"Failed to learn style for {user_id}: {e}")
            await client.chat_postMessage(
                channel=user_id,
                text="I couldn't analyze those posts. Please try again later."
            )
            return

        await client.chat_postMessage(
            channel=user_id,
            text=f"Got it! I'll write in your style from now on.\n"
                 f"*Tone:* {profile.writing_tone or 'not set'}\n"
                 f"*Rules:* {len(profile.stylistic_rules)}  "
                 f"*Banned phrases:* {len(profile.banned_phrases)}"
        )

    async def _handle_edit_submission(self, ack, body: dict, view: dict, client):
        """Save an edited draft."""
        user_id = body["user"]["id"]
        draft_id = view["private_metadata"]
        content = (
            view["state"]["values"]["draft_content"]["draft_input"].get("value") or ""
        ).strip()

        try:
            draft = self.db.get_draft(draft_id)
        except StoreError as e:
            logger.error(f"Failed to load draft {draft_id} for edit: {e}")
            await ack(response_action="errors",
                      errors={"draft_content": GENERIC_ERROR})
            return

        if draft is None:
            await ack(response_action="errors",
                      errors={"draft_content": "This draft no longer exists."})
            return
        if not content:
            await ack(response_action="errors",
                      errors={"draft_content": "The post can't be empty."})
            return
        if draft.platform == Platform.X and len(content) > X_CHAR_LIMIT:
            await ack(response_action="errors",
                      errors={"draft_content": f"X posts are limited to {X_CHAR_LIMIT} "
                                               f"characters ({len(content)} now)."})
            return

        await ack()
        try:
            self.db.update_draft_content(draft_id, content)
        except StoreError as e:
            logger.error(f"Failed to save edit for draft {draft_id}: {e}")
            await client.chat_postMessage(channel=user_id, text=GENERIC_ERROR)
            return
        logger.info(f"Draft edited: {draft_id} by {user_id}")

    # ========================================================
    # Message ingestion
    # ========================================================

    async def _handle_message(self, event: dict, client):
        """Store messages from configured channels."""
        if event.get("subtype") or event.get("bot_id") or not event.get("text"):
            return
        if event.get("channel") not in self.settings.channel_ids:
            return

        user_id = event.get("user") or "unknown"
        user_name = None
        if user_id != "unknown":
            try:
                info = await client.users_info(user=user_id)
                user = info.get("user") or {}
                user_name = user.get("real_name") or user.get("name")
            except SlackApiError:
                logger.warning(f"Could not fetch user info for {user_id}")

        try:
            self.db.save_message(StoredMessage(
                channel_id=event["channel"],
                user_id=user_id,
                user_name=user_name,
                text=event["text"],
                slack_ts=event["ts"]
            ))
        except StoreError as e:
            logger.error(f"Error storing message {event.get('ts')}: {e}")
            return
        logger.debug(f"Captured message in channel {event['channel']}")

    # ========================================================
    # Views
    # ========================================================

    def _draft_modal(self, draft: Draft) -> dict:
        """Full draft for copying, with edit and publish buttons."""
        if draft.platform == Platform.X:
            title = "X Post"
            stats = f"*Character count:* {draft.char_count}/{X_CHAR_LIMIT}"
            destination = "X"
        else:
            title = "LinkedIn Post"
            stats = f"*Word count:* ~{len(draft.content.split())} words"
            destination = "LinkedIn"

        return {
            "type": "modal",
            "title": {"type": "plain_text", "text": title},
            "blocks": [
                {"type": "section", "text": {"type": "mrkdwn", "text": stats}},
                {"type": "divider"},
                {"type": "section", "text": {"type": "plain_text", "text": draft.content}},
                {
                    "type": "actions",
                    "elements": [
                        {
                            "type": "button",
                            "text": {"type": "plain_text", "text": "Edit"},
                            "action_id": Action(kind=ActionKind.EDIT_DRAFT, payload=draft.id).action_id,
                            "value": draft.id,
                        },
                        {
                            "type": "button",
                            "text": {"type": "plain_text", "text": "Mark published"},
                            "action_id": Action(kind=ActionKind.PUBLISH_DRAFT, payload=draft.id).action_id,
                            "value": draft.id,
                        },
                    ]
                },
                {
                    "type": "context",
                    "elements": [{
                        "type": "mrkdwn",
                        "text": f"_Copy this text and paste it into {destination}. "
                                f"Edit freely before posting!_"
                    }]
                },
            ]
        }

    def _edit_modal(self, draft: Draft) -> dict:
        element = {
            "type": "plain_text_input",
            "action_id": "draft_input",
            "multiline": True,
            "initial_value": draft.content,
        }
        if draft.platform == Platform.X:
            element["max_length"] = X_CHAR_LIMIT

        return {
            "type": "modal",
            "callback_id": "edit_draft",
            "private_metadata": draft.id,
            "title": {"type": "plain_text", "text": "Edit Draft"},
            "submit": {"type": "plain_text", "text": "Save"},
            "close": {"type": "plain_text", "text": "Cancel"},
            "blocks": [{
                "type": "input",
                "block_id": "draft_content",
                "label": {"type": "plain_text", "text": "Post"},
                "element": element,
            }]
        }

    def _style_modal(self) -> dict:
        blocks: list[dict] = [{
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": "Paste your best LinkedIn or X posts below. "
                        "This helps me match your unique writing style."
            }
        }]
        for index, block_id in enumerate(STYLE_SAMPLE_BLOCKS, 1):
            element = {
                "type": "plain_text_input",
                "action_id": "post_input",
                "multiline": True,
                "placeholder": {"type": "plain_text", "text": f"Paste post {index} here..."},
            }
            if index == 1:
                element["min_length"] = 50
            blocks.append({
                "type": "input",
                "block_id": block_id,
                "optional": index > 1,
                "label": {
                    "type": "plain_text",
                    "text": f"Post {index}" if index == 1 else f"Post {index} (optional)"
                },
                "element": element,
            })

        return {
            "type": "modal",
            "callback_id": "learn_style",
            "title": {"type": "plain_text", "text": "Learn Your Style"},
            "submit": {"type": "plain_text", "text": "Analyze"},
            "close": {"type": "plain_text", "text": "Cancel"},
            "blocks": blocks,
        }

    def get_app(self) -> AsyncApp:
        """Get the Slack Bolt app instance."""
        return self.app
