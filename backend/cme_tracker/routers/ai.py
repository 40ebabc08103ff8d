"""
CME Tracker - AI Assistant Router
Free-text chat with the hospital CME assistant.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator

from ..services.context import AppContext, get_app_context, get_ai_client
from ..services.integrations import GeminiClient, AIServiceError, AINotConfiguredError
from ..services.integrations.gemini import CHAT_ERROR_MESSAGE, AI_NOT_CONFIGURED_MESSAGE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


class ChatRequest(BaseModel):
    message: str

    @field_validator('message')
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError('Message must not be empty')
        return v.strip()


class ChatResponse(BaseModel):
    reply: str


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    ctx: AppContext = Depends(get_app_context),
    ai: GeminiClient = Depends(get_ai_client),
):
    if not ai.api_key:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=AI_NOT_CONFIGURED_MESSAGE)
    try:
        reply = await ai.chat(request.message)
    except AINotConfiguredError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=AI_NOT_CONFIGURED_MESSAGE)
    except AIServiceError as e:
        logger.error(f"AI chat failed for {ctx.principal.username}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=CHAT_ERROR_MESSAGE)
    return ChatResponse(reply=reply)
