"""Unit tests for Slack commands, actions and ingestion."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_insight
from fieldnote.exceptions import StoreError
from fieldnote.models import (
    Action,
    ActionKind,
    DigestResult,
    DigestState,
    DraftStatus,
    InsightStatus,
    Platform,
)
from fieldnote.slack_handler import ACTION_PATTERN, GENERIC_ERROR, SlackBot


@pytest.fixture
def bot(test_settings, fake_db, mock_llm):
    return SlackBot(test_settings, db=fake_db, llm=mock_llm, app=MagicMock())


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def stored(fake_db):
    """One insight with both drafts."""
    insight = fake_db.create_insight("profile_1", make_insight(1), date(2024, 6, 1))
    x_draft = fake_db.create_draft(insight.id, Platform.X, "Short post")
    linkedin_draft = fake_db.create_draft(insight.id, Platform.LINKEDIN, "Long post")
    return insight, x_draft, linkedin_draft


def click(kind, payload):
    action_id = Action(kind=kind, payload=payload).action_id
    return {"action_id": action_id, "value": payload}


def action_body(response_url="https://hooks.slack.test/r"):
    body = {"trigger_id": "trig", "user": {"id": "U_OWNER"}}
    if response_url:
        body["response_url"] = response_url
    return body


class TestAction:
    """Tests for Action encoding."""

    def test_decode_reads_kind_and_payload(self):
        action = Action.decode("view_x:draft_9")

        assert action.kind == ActionKind.VIEW_X
        assert action.payload == "draft_9"

    def test_value_overrides_payload(self):
        assert Action.decode("ignore_insight:x", "insight_3").payload == "insight_3"

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            Action.decode("launch_rocket:1")

    def test_pattern_matches_every_kind(self):
        for kind in ActionKind:
            assert ACTION_PATTERN.match(Action(kind=kind, payload="p").action_id)
        assert not ACTION_PATTERN.match("post_input")


class TestActions:
    """Tests for button dispatch."""

    @pytest.mark.asyncio
    async def test_view_marks_draft_viewed_and_opens_modal(self, bot, fake_db, client, stored):
        _, x_draft, _ = stored

        await bot._handle_action(AsyncMock(), action_body(), click(ActionKind.VIEW_X, x_draft.id),
                                 client, AsyncMock())

        assert fake_db.get_draft(x_draft.id).status == DraftStatus.VIEWED
        client.views_open.assert_awaited_once()
        view = client.views_open.await_args.kwargs["view"]
        assert view["title"]["text"] == "X Post"

    @pytest.mark.asyncio
    async def test_view_keeps_edited_status(self, bot, fake_db, client, stored):
        _, _, linkedin_draft = stored
        fake_db.update_draft_content(linkedin_draft.id, "Edited long post")

        await bot._handle_action(AsyncMock(), action_body(),
                                 click(ActionKind.VIEW_LINKEDIN, linkedin_draft.id),
                                 client, AsyncMock())

        assert fake_db.get_draft(linkedin_draft.id).status == DraftStatus.EDITED

    @pytest.mark.asyncio
    async def test_edit_from_modal_pushes_view(self, bot, client, stored):
        _, x_draft, _ = stored
        body = action_body(response_url=None) | {"view": {"id": "V1"}}

        await bot._handle_action(AsyncMock(), body, click(ActionKind.EDIT_DRAFT, x_draft.id),
                                 client, AsyncMock())

        client.views_push.assert_awaited_once()
        view = client.views_push.await_args.kwargs["view"]
        assert view["callback_id"] == "edit_draft"
        assert view["private_metadata"] == x_draft.id
        assert view["blocks"][0]["element"]["max_length"] == 280

    @pytest.mark.asyncio
    async def test_publish_marks_published(self, bot, fake_db, client, stored):
        _, x_draft, _ = stored
        respond = AsyncMock()

        await bot._handle_action(AsyncMock(), action_body(),
                                 click(ActionKind.PUBLISH_DRAFT, x_draft.id), client, respond)

        assert fake_db.get_draft(x_draft.id).status == DraftStatus.PUBLISHED
        respond.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ignore_marks_insight_and_drafts(self, bot, fake_db, client, stored):
        insight, x_draft, linkedin_draft = stored

        await bot._handle_action(AsyncMock(), action_body(),
                                 click(ActionKind.IGNORE_INSIGHT, insight.id),
                                 client, AsyncMock())

        assert fake_db.get_insight(insight.id).status == InsightStatus.IGNORED
        assert fake_db.get_draft(x_draft.id).status == DraftStatus.IGNORED
        assert fake_db.get_draft(linkedin_draft.id).status == DraftStatus.IGNORED

    @pytest.mark.asyncio
    async def test_unknown_action_is_acked_and_ignored(self, bot, client):
        ack = AsyncMock()

        await bot._handle_action(ack, action_body(), {"action_id": "nope:1"}, client, AsyncMock())

        ack.assert_awaited_once()
        client.views_open.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_replies_with_error(self, bot, fake_db, client, monkeypatch):
        def broken(draft_id):
            raise StoreError("down")

        monkeypatch.setattr(fake_db, "get_draft", broken)

        await bot._handle_action(AsyncMock(), action_body(response_url=None),
                                 click(ActionKind.VIEW_X, "draft_1"), client, AsyncMock())

        client.chat_postMessage.assert_awaited_once_with(channel="U_OWNER", text=GENERIC_ERROR)


class TestEditSubmission:
    """Tests for the edit modal submission."""

    USER = {"user": {"id": "U_OWNER"}}

    @staticmethod
    def view(draft_id, text):
        return {
            "private_metadata": draft_id,
            "state": {"values": {"draft_content": {"draft_input": {"value": text}}}},
        }

    @pytest.mark.asyncio
    async def test_saves_content(self, bot, fake_db, client, stored):
        _, x_draft, _ = stored
        ack = AsyncMock()

        await bot._handle_edit_submission(ack, self.USER,
                                          self.view(x_draft.id, "  Better post  "), client)

        ack.assert_awaited_once_with()
        draft = fake_db.get_draft(x_draft.id)
        assert draft.content == "Better post"
        assert draft.char_count == 11
        assert draft.status == DraftStatus.EDITED

    @pytest.mark.asyncio
    async def test_rejects_overlong_x_post(self, bot, fake_db, client, stored):
        _, x_draft, _ = stored
        ack = AsyncMock()

        await bot._handle_edit_submission(ack, self.USER,
                                          self.view(x_draft.id, "a" * 281), client)

        assert ack.await_args.kwargs["response_action"] == "errors"
        assert fake_db.get_draft(x_draft.id).content == "Short post"

    @pytest.mark.asyncio
    async def test_long_linkedin_post_allowed(self, bot, fake_db, client, stored):
        _, _, linkedin_draft = stored

        await bot._handle_edit_submission(AsyncMock(), self.USER,
                                          self.view(linkedin_draft.id, "a" * 1000), client)

        assert fake_db.get_draft(linkedin_draft.id).char_count == 1000

    @pytest.mark.asyncio
    async def test_rejects_empty_content(self, bot, client, stored):
        _, x_draft, _ = stored
        ack = AsyncMock()

        await bot._handle_edit_submission(ack, self.USER,
                                          self.view(x_draft.id, "   "), client)

        assert "draft_content" in ack.await_args.kwargs["errors"]

    @pytest.mark.asyncio
    async def test_lookup_failure_acks_with_error(self, bot, fake_db, client, monkeypatch):
        """A store failure still answers the modal instead of timing out."""
        def broken(draft_id):
            raise StoreError("down")

        monkeypatch.setattr(fake_db, "get_draft", broken)
        ack = AsyncMock()

        await bot._handle_edit_submission(ack, self.USER,
                                          self.view("draft_1", "New text"), client)

        ack.assert_awaited_once_with(response_action="errors",
                                     errors={"draft_content": GENERIC_ERROR})

    @pytest.mark.asyncio
    async def test_save_failure_notifies_user(self, bot, fake_db, client, stored, monkeypatch):
        _, x_draft, _ = stored

        def broken(draft_id, content):
            raise StoreError("down")

        monkeypatch.setattr(fake_db, "update_draft_content", broken)
        ack = AsyncMock()

        await bot._handle_edit_submission(ack, self.USER,
                                          self.view(x_draft.id, "New text"), client)

        ack.assert_awaited_once_with()
        client.chat_postMessage.assert_awaited_once_with(channel="U_OWNER", text=GENERIC_ERROR)
        assert fake_db.get_draft(x_draft.id).content == "Short post"


class TestMessageIngestion:
    """Tests for storing channel messages."""

    @pytest.mark.asyncio
    async def test_stores_message_once(self, bot, fake_db, client):
        client.users_info.return_value = {"user": {"real_name": "Ada"}}
        event = {"channel": "C001", "user": "U1", "text": "hello", "ts": "100.000001"}

        await bot._handle_message(event, client)
        await bot._handle_message(event, client)

        assert len(fake_db.messages) == 1
        assert fake_db.messages[0]["user_name"] == "Ada"

    @pytest.mark.asyncio
    async def test_ignores_unconfigured_channel(self, bot, fake_db, client):
        event = {"channel": "C999", "user": "U1", "text": "hello", "ts": "1.0"}

        await bot._handle_message(event, client)

        assert fake_db.messages == []

    @pytest.mark.asyncio
    async def test_ignores_bots_and_subtypes(self, bot, fake_db, client):
        events = [
            {"channel": "C001", "bot_id": "B1", "text": "beep", "ts": "1.0"},
            {"channel": "C001", "subtype": "channel_join", "text": "joined", "ts": "2.0"},
        ]

        for event in events:
            await bot._handle_message(event, client)

        assert fake_db.messages == []


class TestCommand:
    """Tests for /fieldnote."""

    @pytest.mark.asyncio
    async def test_style_opens_modal(self, bot, client):
        command = {"user_id": "U1", "channel_id": "C001", "text": " Style ", "trigger_id": "t"}

        await bot._handle_command(AsyncMock(), command, client)

        view = client.views_open.await_args.kwargs["view"]
        assert view["callback_id"] == "learn_style"

    @pytest.mark.asyncio
    async def test_bare_command_starts_digest(self, bot, client):
        bot.start_digest = MagicMock()
        command = {"user_id": "U1", "channel_id": "C001", "text": ""}

        await bot._handle_command(AsyncMock(), command, client)

        client.chat_postEphemeral.assert_awaited_once()
        bot.start_digest.assert_called_once_with("U1")

    @pytest.mark.asyncio
    async def test_run_digest_returns_result(self, bot):
        result = DigestResult(state=DigestState.NO_MESSAGES, success=True)
        bot.pipeline.run = AsyncMock(return_value=result)

        assert await bot.run_digest("U1") is result
        bot.pipeline.run.assert_awaited_once_with("U1")


class TestStyleSubmission:
    """Tests for the learn-style modal submission."""

    @pytest.mark.asyncio
    async def test_learns_from_filled_blocks(self, bot, fake_db, mock_llm, client):
        mock_llm.complete_json.return_value = {
            "writing_tone": "Plain",
            "stylistic_rules": ["Short"],
            "banned_phrases": [],
        }
        view = {"state": {"values": {
            "post_1": {"post_input": {"value": "First sample post"}},
            "post_2": {"post_input": {"value": None}},
        }}}

        await bot._handle_style_submission(AsyncMock(), {"user": {"id": "U1"}}, view, client)

        assert fake_db.get_profile_by_user("U1").writing_tone == "Plain"
        assert "Plain" in client.chat_postMessage.await_args.kwargs["text"]
