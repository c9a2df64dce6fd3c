"""
Chat API Route

POST /api/chat: the paid feature. Passes the subscription access gate,
validates the body, checks the monthly quota, asks Gemini, and counts
the message after the reply is ready (in a background task, so the
response is not held up by the counter write).
"""

import logging

from fastapi import APIRouter, BackgroundTasks

from app.config.settings import get_settings
from app.domain.chat import (
    ChatRequest,
    ChatResponse,
    ConversationTurn,
    MessageRole,
    QuotaInfo,
    extract_vehicle,
    validate_chat_request,
)
from app.infrastructure.ai.gemini_service import estimate_cost_gbp
from app.infrastructure.exceptions import AIServiceError, QuotaExceededError
from app.api.dependencies import (
    ActiveSubscriptionDep,
    AuditLoggerDep,
    CurrentUserDep,
    GeminiServiceDep,
    QuotaServiceDep,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUserDep,
    subscription: ActiveSubscriptionDep,
    quota: QuotaServiceDep,
    gemini: GeminiServiceDep,
    audit: AuditLoggerDep,
):
    """
    Answer one chat message.

    Errors:
        400 malformed message or history
        403 needsSubscription (from the access gate)
        429 needsUpgrade with quota counters
        500 AI_SERVICE_ERROR
    """
    settings = get_settings()
    message, history = validate_chat_request(
        body,
        max_message_length=settings.chat_max_message_length,
        max_history_length=settings.chat_max_history_length,
    )

    check = await quota.check_and_reserve(user.id, subscription.plan_id)
    if not check.allowed:
        logger.info(f"Quota exhausted for user {user.id} ({check.used}/{check.limit})")
        raise QuotaExceededError(limit=check.limit, used=check.used)

    vehicle = extract_vehicle(message)

    try:
        reply = await gemini.generate_reply(message, history, vehicle=vehicle)
    except AIServiceError as e:
        audit.log_chat(
            "chat_failed",
            user_id=user.id,
            success=False,
            message=e.message,
            metadata={"message_length": len(message)},
        )
        raise

    background_tasks.add_task(quota.commit_quietly, user.id, subscription.plan_id)

    audit.log_chat(
        "chat_completed",
        user_id=user.id,
        message=(
            f"Chat message processed ({reply.input_tokens} input + "
            f"{reply.output_tokens} output tokens)"
        ),
        metadata={
            "message_length": len(message),
            "vehicle": vehicle,
            "input_tokens": reply.input_tokens,
            "output_tokens": reply.output_tokens,
            "tokens_used": reply.total_tokens,
            "cost_gbp": estimate_cost_gbp(reply.input_tokens, reply.output_tokens),
            "model": gemini.model,
        },
    )

    after = check.after_commit()
    return ChatResponse(
        response=reply.text,
        conversation_history=[
            *history,
            ConversationTurn(role=MessageRole.USER, content=message),
            ConversationTurn(role=MessageRole.ASSISTANT, content=reply.text),
        ],
        quota=QuotaInfo(remaining=after.remaining, limit=after.limit, used=after.used),
    )
