"""
Conversation history fetching for Fieldnote.
Pulls messages straight from Slack's conversations.history API.
"""
from slack_sdk.web.async_client import AsyncWebClient
from slack_sdk.errors import SlackApiError
from typing import Optional
import aiohttp
import asyncio
import logging

from fieldnote.exceptions import FetchError
from fieldnote.models import ConversationTurn, token_key

logger = logging.getLogger(__name__)


class ConversationFetcher:
    """
    Fetches conversation turns newer than a token across channels.

    Skips:
    - Subtype events (joins, edits, channel topic changes...)
    - Messages without text
    - Messages posted by bots
    """

    def __init__(self, client: AsyncWebClient, page_size: int = 200):
        self.client = client
        self.page_size = page_size

    async def fetch(
        self,
        channel_ids: list[str],
        lower_bound_token: str
    ) -> list[ConversationTurn]:
        """
        Fetch every turn after `lower_bound_token` from all channels,
        sorted oldest first. Any channel failure aborts the whole fetch.
        """
        names: dict[str, Optional[str]] = {}
        turns: list[ConversationTurn] = []

        for channel_id in channel_ids:
            turns.extend(
                await self._fetch_channel(channel_id, lower_bound_token, names)
            )

        turns.sort(key=lambda t: token_key(t.sequence_token))
        logger.info(f"Fetched {len(turns)} messages from {len(channel_ids)} "
                    f"channel(s) since {lower_bound_token}")
        return turns

    async def _fetch_channel(
        self,
        channel_id: str,
        lower_bound_token: str,
        names: dict[str, Optional[str]]
    ) -> list[ConversationTurn]:
        bound = token_key(lower_bound_token)
        turns: list[ConversationTurn] = []
        cursor: Optional[str] = None

        try:
            while True:
                response = await self.client.conversations_history(
                    channel=channel_id,
                    oldest=lower_bound_token,
                    limit=self.page_size,
                    cursor=cursor
                )

                for msg in response.get("messages") or []:
                    if msg.get("bot_id") or msg.get("subtype") or not msg.get("text"):
                        continue
                    if token_key(msg["ts"]) <= bound:
                        continue

                    user_id = msg.get("user") or "unknown"
                    turns.append(ConversationTurn(
                        author_id=user_id,
                        author_display_name=await self._display_name(user_id, names),
                        text=msg["text"],
                        sequence_token=msg["ts"]
                    ))

                cursor = (response.get("response_metadata") or {}).get("next_cursor")
                if not cursor:
                    break
        except SlackApiError as e:
            logger.error(f"Failed to fetch channel history for {channel_id}: "
                         f"{e.response.get('error')}")
            raise FetchError(f"Failed to fetch channel {channel_id}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Network error fetching channel history for {channel_id}: {e}")
            raise FetchError(f"Failed to fetch channel {channel_id}") from e

        return turns

    async def _display_name(
        self,
        user_id: str,
        names: dict[str, Optional[str]]
    ) -> Optional[str]:
        """Resolve a user's display name, cached for one fetch."""
        if user_id == "unknown":
            return None
        if user_id in names:
            return names[user_id]

        name = None
        try:
            result = await self.client.users_info(user=user_id)
            user = result.get("user") or {}
            name = user.get("real_name") or user.get("name")
        except SlackApiError:
            logger.warning(f"Could not fetch user info for {user_id}")

        names[user_id] = name
        return name
