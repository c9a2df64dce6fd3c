"""
Chat Domain Models for My Mechanic

Pure Python/Pydantic models for the chat request/response cycle.
"""

import re
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from app.infrastructure.exceptions import ValidationError


_VEHICLE_PATTERN = re.compile(r"\[Vehicle: ([^\]]+)\]\s*")


class MessageRole(str, Enum):
    """Role of the message sender."""
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    role: MessageRole
    content: str


class ChatRequest(BaseModel):
    """
    Raw chat request body.

    Fields are loosely typed so malformed input is reported as a 400 by
    validate_chat_request instead of a schema error.
    """
    message: Any = None
    conversation_history: Any = Field(default_factory=list, alias="conversationHistory")

    model_config = ConfigDict(populate_by_name=True)


class QuotaInfo(BaseModel):
    remaining: int
    limit: int
    used: int


class ChatResponse(BaseModel):
    response: str
    conversation_history: List[ConversationTurn] = Field(
        serialization_alias="conversationHistory"
    )
    quota: QuotaInfo


class AssistantReply(BaseModel):
    """Language-model answer plus token accounting."""
    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def validate_chat_request(
    request: ChatRequest,
    max_message_length: int,
    max_history_length: int,
) -> Tuple[str, List[ConversationTurn]]:
    """Validate a chat request; returns the message and parsed history."""
    message = request.message
    if message is None or message == "":
        raise ValidationError("Message is required")
    if not isinstance(message, str):
        raise ValidationError("Message must be a string")
    if not message.strip():
        raise ValidationError("Message cannot be empty")
    if len(message) > max_message_length:
        raise ValidationError(
            f"Message is too long. Maximum length is {max_message_length} characters."
        )

    history = request.conversation_history
    if history is None:
        history = []
    if not isinstance(history, list):
        raise ValidationError("Conversation history must be an array")
    if len(history) > max_history_length:
        raise ValidationError(
            "Conversation history is too long. Please start a new conversation."
        )

    try:
        turns = [ConversationTurn.model_validate(turn) for turn in history]
    except ValueError as e:
        raise ValidationError(
            "Conversation history entries need a role and content",
            original_error=e,
        )

    return message, turns


def extract_vehicle(message: str) -> Optional[str]:
    """Vehicle from an optional "[Vehicle: ...]" prefix on the message."""
    match = _VEHICLE_PATTERN.search(message)
    return match.group(1).strip() if match else None
