"""
Profile service for Fieldnote.
Holds each user's writing personalization.
"""
import logging
from typing import Optional

from fieldnote.database import Database
from fieldnote.models import Profile, StyleAnalysis
from fieldnote.services.llm import LLMClient
from fieldnote.prompts.templates import STYLE_ANALYSIS_SYSTEM, STYLE_ANALYSIS_PROMPT

logger = logging.getLogger(__name__)

MAX_STYLE_ENTRIES = 6


class ProfileStore:
    """Per-user personalization, created lazily with empty defaults."""

    def __init__(
        self,
        db: Database,
        default_timezone: str = "America/Los_Angeles",
        llm: Optional[LLMClient] = None
    ):
        self.db = db
        self.default_timezone = default_timezone
        self.llm = llm

    def get_or_create(self, external_user_id: str) -> Profile:
        """Get a user's profile, creating a default one on first access."""
        profile = self.db.get_profile_by_user(external_user_id)
        if profile is not None:
            return profile

        profile = self.db.create_profile(external_user_id, self.default_timezone)
        logger.info(f"Created new profile for {external_user_id}")
        return profile

    async def learn_style(
        self,
        external_user_id: str,
        samples: list[str]
    ) -> Profile:
        """
        Analyze sample posts and fold the result into the user's profile.

        Tone and style rules are replaced; banned phrases accumulate.
        """
        if self.llm is None:
            raise RuntimeError("Style learning needs an LLM client")

        samples = [s.strip() for s in samples if s and s.strip()]
        if not samples:
            raise ValueError("At least one sample post is required")

        profile = self.get_or_create(external_user_id)

        prompt = STYLE_ANALYSIS_PROMPT.format(
            samples="\n\n---\n\n".join(samples)
        )
        result = await self.llm.complete_json(
            prompt,
            system_prompt=STYLE_ANALYSIS_SYSTEM,
            max_tokens=500
        )
        analysis = StyleAnalysis.model_validate(result)

        banned = list(profile.banned_phrases)
        for phrase in analysis.banned_phrases[:MAX_STYLE_ENTRIES]:
            if phrase not in banned:
                banned.append(phrase)

        updated = self.db.update_profile(external_user_id, {
            "writing_tone": analysis.writing_tone or profile.writing_tone,
            "stylistic_rules": analysis.stylistic_rules[:MAX_STYLE_ENTRIES],
            "banned_phrases": banned,
        })
        logger.info(f"Learned writing style for {external_user_id} "
                    f"from {len(samples)} sample(s)")
        return updated
