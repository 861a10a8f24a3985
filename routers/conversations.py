from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.services.conversation_service import ConversationService
from models.user import User
from routers.users import get_registered_user
from schemas.chat import ConversationResponse, CreateConversationRequest

router = APIRouter()


@router.get("", response_model=list[ConversationResponse])
async def list_conversations(
    user: User = Depends(get_registered_user),
    db: AsyncSession = Depends(get_db),
) -> list[ConversationResponse]:
    """Get the current user's non-archived conversations, most recent first."""
    return await ConversationService(db).list_conversations(user.id)


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    request: CreateConversationRequest,
    user: User = Depends(get_registered_user),
    db: AsyncSession = Depends(get_db),
) -> ConversationResponse:
    """Start an empty conversation."""
    return await ConversationService(db).create_conversation(user.id, title=request.title)
