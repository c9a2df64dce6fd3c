"""
Gemini AI Service for My Mechanic

Uses the google.genai SDK to answer automotive questions. The service
takes the conversation so far plus the new question and returns the
assistant reply with token counts for metering and cost tracking.
"""

import asyncio
import os
from functools import lru_cache
from typing import List, Optional
import logging

from google import genai
from google.genai import types

from app.config.settings import get_settings
from app.domain.chat import AssistantReply, ConversationTurn, MessageRole
from app.infrastructure.exceptions import (
    AIServiceError,
    ConfigurationError,
)


logger = logging.getLogger(__name__)


# Load system prompt from file
SYSTEM_PROMPT_PATH = os.path.join(
    os.path.dirname(__file__),
    "SYSTEM_PROMPT.md"
)

VEHICLE_PLACEHOLDER = "{{VEHICLE_CONTEXT}}"

NO_VEHICLE_CONTEXT = (
    "No vehicle was provided. Ask the user to select their vehicle "
    "for advice tailored to it."
)

# Gemini 2.5 Flash list prices (USD per million tokens) and a fixed GBP rate,
# used only for the cost estimate written to the audit trail.
INPUT_COST_PER_MTOK_USD = 0.30
OUTPUT_COST_PER_MTOK_USD = 2.50
USD_TO_GBP = 0.79


def load_system_prompt() -> str:
    """Load the system prompt template from the markdown file."""
    try:
        with open(SYSTEM_PROMPT_PATH, "r", encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        logger.warning(f"System prompt not found at {SYSTEM_PROMPT_PATH}")
        return (
            "You are My Mechanic, a UK-based automotive assistant.\n\n"
            f"{VEHICLE_PLACEHOLDER}"
        )


def estimate_cost_gbp(input_tokens: int, output_tokens: int) -> float:
    usd = (
        input_tokens * INPUT_COST_PER_MTOK_USD
        + output_tokens * OUTPUT_COST_PER_MTOK_USD
    ) / 1_000_000
    return round(usd * USD_TO_GBP, 6)


class GeminiService:
    """
    Gemini chat service.

    Builds a vehicle-aware system instruction, maps conversation turns onto
    Gemini contents, and runs the blocking SDK call in a worker thread.
    """

    def __init__(self, client: Optional[genai.Client] = None):
        settings = get_settings()
        self._model = settings.gemini_model
        self._max_output_tokens = settings.chat_max_output_tokens
        self._temperature = settings.chat_temperature
        self._template = load_system_prompt()

        if client is not None:
            self._client = client
            return

        api_key = settings.google_api_key or settings.gemini_api_key
        if not api_key:
            raise ConfigurationError(
                "Missing GOOGLE_API_KEY environment variable",
                missing_keys=["GOOGLE_API_KEY"]
            )

        self._client = genai.Client(api_key=api_key)
        logger.info(f"GeminiService initialized with model: {self._model}")

    @property
    def model(self) -> str:
        return self._model

    def build_system_prompt(self, vehicle: Optional[str]) -> str:
        """Fill the vehicle section of the system prompt."""
        if vehicle:
            context = (
                f"The user's vehicle: {vehicle}\n\n"
                "Acknowledge this vehicle at the start of the response and "
                "tailor all advice to it."
            )
        else:
            context = NO_VEHICLE_CONTEXT
        return self._template.replace(VEHICLE_PLACEHOLDER, context)

    def _to_contents(
        self,
        history: List[ConversationTurn],
        message: str,
    ) -> List[types.Content]:
        contents = []
        for turn in history:
            role = "model" if turn.role == MessageRole.ASSISTANT else "user"
            contents.append(
                types.Content(role=role, parts=[types.Part.from_text(text=turn.content)])
            )
        contents.append(
            types.Content(role="user", parts=[types.Part.from_text(text=message)])
        )
        return contents

    async def generate_reply(
        self,
        message: str,
        history: List[ConversationTurn],
        vehicle: Optional[str] = None,
    ) -> AssistantReply:
        """
        Send the conversation to Gemini and return the reply.

        Args:
            message: The user's new message (as sent, vehicle prefix included)
            history: Prior turns, oldest first
            vehicle: Vehicle description extracted from the message, if any

        Raises:
            AIServiceError: on any SDK failure or an empty answer
        """
        config = types.GenerateContentConfig(
            system_instruction=self.build_system_prompt(vehicle),
            temperature=self._temperature,
            max_output_tokens=self._max_output_tokens,
        )

        try:
            response = await asyncio.to_thread(
                lambda: self._client.models.generate_content(
                    model=self._model,
                    contents=self._to_contents(history, message),
                    config=config,
                )
            )
        except Exception as e:
            error_msg = str(e).lower()
            if "rate" in error_msg or "quota" in error_msg:
                logger.warning(f"Gemini rate limit hit: {e}")
            else:
                logger.error(f"Gemini call failed: {e}")
            raise AIServiceError(
                f"Failed to generate reply: {e}",
                model=self._model,
                operation="generate_reply",
                original_error=e
            ) from e

        if not response.text:
            raise AIServiceError(
                "Empty response from Gemini",
                model=self._model,
                operation="generate_reply"
            )

        usage = response.usage_metadata
        return AssistantReply(
            text=response.text,
            input_tokens=(usage.prompt_token_count or 0) if usage else 0,
            output_tokens=(usage.candidates_token_count or 0) if usage else 0,
        )


@lru_cache
def get_gemini_service() -> GeminiService:
    """Get cached Gemini service instance."""
    return GeminiService()
