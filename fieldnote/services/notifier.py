"""
Slack DM delivery for Fieldnote.
"""
from slack_sdk.web.async_client import AsyncWebClient
from slack_sdk.errors import SlackApiError
import logging

from fieldnote.exceptions import DeliveryError
from fieldnote.models import Action, ActionKind, InsightBundle

logger = logging.getLogger(__name__)


NO_NEW_MESSAGES_NOTICE = (
    "No new conversations since your last Fieldnote. "
    "Check back after more discussions!"
)

NO_INSIGHTS_NOTICE = (
    "Analyzed {message_count} messages but didn't find any standout insights "
    "this time. Keep the conversations going!"
)

FAILURE_NOTICE = (
    "Something went wrong generating your insights. Please try again later."
)


class Notifier:
    """Sends digests and notices to a user by DM."""

    def __init__(self, client: AsyncWebClient):
        self.client = client

    async def send_bundle(
        self,
        owner_external_id: str,
        bundles: list[InsightBundle]
    ) -> None:
        """Send the digest of insights with buttons to view each draft."""
        count = len(bundles)
        plural = "s" if count != 1 else ""
        await self._post(
            owner_external_id,
            text=f"Fieldnote: Found {count} insight{plural}",
            blocks=self._format_bundle_blocks(bundles)
        )
        logger.info(f"Fieldnote digest sent to {owner_external_id} ({count} insight{plural})")

    async def send_plain_notice(self, owner_external_id: str, text: str) -> None:
        """Send a plain text notice."""
        await self._post(owner_external_id, text=text)

    async def _post(self, channel: str, **kwargs) -> None:
        try:
            await self.client.chat_postMessage(channel=channel, **kwargs)
        except SlackApiError as e:
            logger.error(f"Failed to send DM to {channel}: {e.response.get('error')}")
            raise DeliveryError(f"Failed to send DM to {channel}") from e

    def _format_bundle_blocks(self, bundles: list[InsightBundle]) -> list[dict]:
        count = len(bundles)
        blocks: list[dict] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "Fieldnote", "emoji": True}
            },
            {
                "type": "context",
                "elements": [{
                    "type": "mrkdwn",
                    "text": f"Found *{count}* insight{'s' if count != 1 else ''} "
                            f"from your conversations"
                }]
            },
            {"type": "divider"},
        ]

        for index, bundle in enumerate(bundles):
            insight = bundle.insight
            x_draft = bundle.short_draft
            linkedin_draft = bundle.long_draft

            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*{index + 1}. {insight.topic}*"}
            })
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": insight.core_insight}]
            })
            blocks.append({
                "type": "actions",
                "elements": [
                    self._button(f"X ({x_draft.char_count}c)",
                                 Action(kind=ActionKind.VIEW_X, payload=x_draft.id)),
                    self._button("LinkedIn",
                                 Action(kind=ActionKind.VIEW_LINKEDIN, payload=linkedin_draft.id)),
                    self._button("Ignore",
                                 Action(kind=ActionKind.IGNORE_INSIGHT, payload=insight.id)),
                ]
            })

            if index < count - 1:
                blocks.append({"type": "divider"})

        blocks.append({
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": "Click to view full post, then copy and edit before publishing"
            }]
        })
        return blocks

    @staticmethod
    def _button(label: str, action: Action) -> dict:
        return {
            "type": "button",
            "text": {"type": "plain_text", "text": label, "emoji": False},
            "action_id": action.action_id,
            "value": action.payload,
        }
