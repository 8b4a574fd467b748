"""Conversational refinement of subscriber interests."""

from dataclasses import dataclass
from typing import List, Sequence

import structlog

from ..config.settings import settings
from ..llm.client import LLMClient

logger = structlog.get_logger()

_PREAMBLE = ("You are a helpful assistant helping someone set up their commercial real estate "
             "newsletter preferences.")

QUESTIONS_PROMPT = _PREAMBLE + """

The user has expressed interest in: {interests}

Generate 3-5 clarifying questions to better understand their specific interests. These questions should help refine what types of commercial real estate news they want to receive.

Return a JSON object with a "questions" array containing the questions."""

PREFERENCES_PROMPT = _PREAMBLE + """

Initial interests: {interests}

Conversation:
{conversation}

Based on the conversation, generate 3-5 refined preference statements that clearly describe what commercial real estate news the user wants to receive. Each statement should be specific and actionable.

Return a JSON object with a "preferences" array containing the preference statements."""

COUNTIES_PROMPT = _PREAMBLE + """

Initial interests: {interests}

Conversation:
{conversation}

Refined preferences:
• {preferences}

Available counties: {counties}

Based on the conversation and preferences, determine which counties are most relevant. Return a JSON object with a "counties" array containing county names (exact matches from the available counties list)."""


@dataclass
class ConversationTurn:
    question: str
    answer: str


def _list_schema(key: str) -> dict:
    return {
        "type": "OBJECT",
        "properties": {key: {"type": "ARRAY", "items": {"type": "STRING"}}},
        "required": [key],
    }


def _format_conversation(conversation: Sequence[ConversationTurn]) -> str:
    return "\n\n".join(f"Q: {turn.question}\nA: {turn.answer}" for turn in conversation)


class InterestRefiner:
    """Asks follow-up questions and turns the answers into preferences and counties.

    Errors propagate to the caller; there is no useful fallback for a
    conversational step.
    """

    def __init__(self, llm_client: LLMClient = None, model: str = None):
        self.llm = llm_client or LLMClient()
        self.model = model or settings.llm_categorization_model

    async def _ask_for_list(self, prompt: str, key: str, operation: str) -> List[str]:
        if not self.llm.is_configured():
            raise ValueError("LLM API key not configured")
        data = await self.llm.complete_json(
            prompt,
            model=self.model,
            temperature=1.0,
            response_schema=_list_schema(key),
            operation=operation,
        )
        values = data.get(key) if isinstance(data, dict) else None
        return [str(v).strip() for v in values or [] if str(v).strip()]

    async def ask_questions(self, interests: str) -> List[str]:
        return await self._ask_for_list(
            QUESTIONS_PROMPT.format(interests=interests), "questions", "refine-interests-questions"
        )

    async def enhance_description(self, interests: str,
                                  conversation: Sequence[ConversationTurn]) -> List[str]:
        return await self._ask_for_list(
            PREFERENCES_PROMPT.format(interests=interests,
                                      conversation=_format_conversation(conversation)),
            "preferences",
            "refine-interests-preferences",
        )

    async def determine_counties(self, interests: str, conversation: Sequence[ConversationTurn],
                                 preferences: Sequence[str],
                                 available_counties: Sequence[str]) -> List[str]:
        """Counties from `available_counties` that match the conversation."""
        counties = await self._ask_for_list(
            COUNTIES_PROMPT.format(
                interests=interests,
                conversation=_format_conversation(conversation),
                preferences="\n• ".join(preferences),
                counties=", ".join(available_counties),
            ),
            "counties",
            "refine-interests-determine-counties",
        )
        # Models tend to append " County"
        available = set(available_counties)
        matched = []
        for name in counties:
            candidate = name if name in available else name.removesuffix(" County")
            if candidate in available and candidate not in matched:
                matched.append(candidate)
        dropped = len(counties) - len(matched)
        if dropped:
            logger.info("refiner_counties_dropped", dropped=dropped)
        return matched
