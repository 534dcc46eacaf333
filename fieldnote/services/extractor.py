"""
Insight extraction service for Fieldnote.
"""
import logging

from fieldnote.models import ConversationTurn, ExtractedInsight
from fieldnote.services.llm import LLMClient
from fieldnote.prompts.templates import (
    INSIGHT_EXTRACTION_SYSTEM,
    INSIGHT_EXTRACTION_USER
)

logger = logging.getLogger(__name__)

MAX_INSIGHTS = 3


def format_conversation(turns: list[ConversationTurn]) -> str:
    """Format turns for LLM consumption."""
    return "\n".join(
        f"[{t.author_display_name or t.author_id}]: {t.text}"
        for t in turns
    )


class InsightExtractor:
    """
    Extracts up to three shareable insights from a conversation.

    Extraction failures are never fatal: a bad or unparsable model
    response means "no insights found".
    """

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def extract(self, conversation_text: str) -> list[ExtractedInsight]:
        prompt = INSIGHT_EXTRACTION_USER.format(conversation=conversation_text)

        try:
            result = await self.llm.complete_json(
                prompt,
                system_prompt=INSIGHT_EXTRACTION_SYSTEM,
                max_tokens=600
            )
        except Exception as e:
            logger.error(f"Failed to extract insights: {e}")
            return []

        if not isinstance(result, list):
            logger.warning("LLM returned non-list for insights")
            return []

        insights = []
        for entry in result:
            if not isinstance(entry, dict):
                continue
            topic = entry.get("topic")
            core = entry.get("core_insight")
            if not isinstance(topic, str) or not isinstance(core, str):
                continue
            if not topic.strip() or not core.strip():
                continue

            context = entry.get("supporting_context")
            insights.append(ExtractedInsight(
                topic=topic.strip(),
                core_insight=core.strip(),
                supporting_context=context.strip() if isinstance(context, str) else ""
            ))

        logger.info(f"Extracted {len(insights)} insight(s), keeping {min(len(insights), MAX_INSIGHTS)}")
        return insights[:MAX_INSIGHTS]
