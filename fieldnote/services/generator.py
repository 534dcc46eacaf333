"""
Content generation service for Fieldnote.
Generates platform-specific post drafts.
"""
import logging
import re
from enum import Enum

from fieldnote.exceptions import MalformedResponseError
from fieldnote.models import ExtractedInsight, Profile, GeneratedPosts
from fieldnote.services.llm import LLMClient
from fieldnote.prompts.templates import (
    build_voice_prompt,
    COMBINED_POST_PROMPT,
    X_POST_PROMPT,
    X_POST_CORRECTION_PROMPT,
    LINKEDIN_PROMPT
)

logger = logging.getLogger(__name__)

X_CHAR_LIMIT = 280
ELLIPSIS = "..."
# Word-boundary search gives up before this fraction of the cut point
MIN_BOUNDARY_RATIO = 0.7
WHITESPACE = re.compile(r"\s")


def smart_truncate(text: str, max_length: int = X_CHAR_LIMIT) -> str:
    """Truncate at a word boundary and append an ellipsis."""
    if len(text) <= max_length:
        return text

    cut = max_length - len(ELLIPSIS)

    boundary = -1
    for match in WHITESPACE.finditer(text, 0, cut + 1):
        boundary = match.start()

    if boundary < cut * MIN_BOUNDARY_RATIO:
        boundary = cut

    return text[:boundary].rstrip() + ELLIPSIS


class GenerationMode(str, Enum):
    COMBINED = "combined"
    SPLIT = "split"


class ShortFormStage(Enum):
    GENERATE = "generate"
    VALIDATE = "validate"
    RETRY = "retry"
    TRUNCATE = "truncate"
    DONE = "done"


class PostGenerator:
    """
    Generates X and LinkedIn drafts for an insight.

    Modes:
    - combined: one JSON call returns both posts
    - split: one call per platform, X retried once when over the limit

    Either way the X draft never leaves here over 280 characters.
    """

    MAX_SHORT_FORM_RETRIES = 1

    def __init__(self, llm: LLMClient, mode: str = GenerationMode.COMBINED.value):
        self.llm = llm
        self.mode = GenerationMode(mode)

    async def generate(
        self,
        insight: ExtractedInsight,
        profile: Profile
    ) -> GeneratedPosts:
        """Generate both drafts for an insight in the profile's voice."""
        system_prompt = build_voice_prompt(
            profile.writing_tone,
            profile.stylistic_rules,
            profile.banned_phrases
        )

        if self.mode is GenerationMode.COMBINED:
            return await self._generate_combined(insight, system_prompt)
        return await self._generate_split(insight, system_prompt)

    async def _generate_combined(
        self,
        insight: ExtractedInsight,
        system_prompt: str
    ) -> GeneratedPosts:
        prompt = COMBINED_POST_PROMPT.format(**insight.model_dump())
        result = await self.llm.complete_json(
            prompt,
            system_prompt=system_prompt,
            temperature=0.7,
            max_tokens=800
        )

        if not isinstance(result, dict):
            raise MalformedResponseError("Expected a JSON object with both posts")
        x_post = result.get("x_post")
        linkedin_post = result.get("linkedin_post")
        if not isinstance(x_post, str) or not isinstance(linkedin_post, str):
            raise MalformedResponseError("Response is missing x_post or linkedin_post")

        x_post = self._clean_draft(x_post)
        if len(x_post) > X_CHAR_LIMIT:
            logger.warning(f"X post exceeded {X_CHAR_LIMIT} chars "
                           f"({len(x_post)}), truncating")
            x_post = smart_truncate(x_post)

        return GeneratedPosts(
            short_form=x_post,
            long_form=self._clean_draft(linkedin_post)
        )

    async def _generate_split(
        self,
        insight: ExtractedInsight,
        system_prompt: str
    ) -> GeneratedPosts:
        x_post = await self._generate_short_form(insight, system_prompt)

        linkedin_post = await self.llm.complete(
            LINKEDIN_PROMPT.format(**insight.model_dump()),
            system_prompt=system_prompt,
            temperature=0.7,
            max_tokens=600
        )

        return GeneratedPosts(
            short_form=x_post,
            long_form=self._clean_draft(linkedin_post)
        )

    async def _generate_short_form(
        self,
        insight: ExtractedInsight,
        system_prompt: str
    ) -> str:
        """generate -> validate -> [retry once -> validate] -> truncate"""
        stage = ShortFormStage.GENERATE
        retries_left = self.MAX_SHORT_FORM_RETRIES
        draft = ""

        while stage is not ShortFormStage.DONE:
            if stage is ShortFormStage.GENERATE:
                draft = await self._complete_short_form(
                    X_POST_PROMPT.format(**insight.model_dump()),
                    system_prompt
                )
                stage = ShortFormStage.VALIDATE

            elif stage is ShortFormStage.VALIDATE:
                if len(draft) <= X_CHAR_LIMIT:
                    stage = ShortFormStage.DONE
                elif retries_left > 0:
                    stage = ShortFormStage.RETRY
                else:
                    stage = ShortFormStage.TRUNCATE

            elif stage is ShortFormStage.RETRY:
                retries_left -= 1
                logger.info(f"X post was {len(draft)} chars, retrying once")
                draft = await self._complete_short_form(
                    X_POST_CORRECTION_PROMPT.format(
                        length=len(draft),
                        overflow=len(draft) - X_CHAR_LIMIT,
                        previous=draft
                    ),
                    system_prompt
                )
                stage = ShortFormStage.VALIDATE

            elif stage is ShortFormStage.TRUNCATE:
                logger.warning(f"X post still {len(draft)} chars after retry, truncating")
                draft = smart_truncate(draft)
                stage = ShortFormStage.DONE

        return draft

    async def _complete_short_form(self, prompt: str, system_prompt: str) -> str:
        draft = await self.llm.complete(
            prompt,
            system_prompt=system_prompt,
            temperature=0.8,
            max_tokens=150
        )
        return self._clean_draft(draft)

    def _clean_draft(self, draft: str) -> str:
        """Trim whitespace and collapse runs of blank lines."""
        draft = re.sub(r'\n{3,}', '\n\n', draft)
        return draft.strip()
