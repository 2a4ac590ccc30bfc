"""
Course chat API routes.

Why:
    Each course has an open chat: any account may read and post once the
    course exists. Messages are immutable; only the sender or an administrator
    may delete one.

Ordering:
    The store reads newest first (bounded to the most recent page); the route
    reverses the page so clients receive chronological order.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from backend.chat.store import DEFAULT_HISTORY_LIMIT, MAX_MESSAGE_LENGTH, ChatMessage, ConversationStore, chronological
from backend.courses.repo import CourseRepo
from backend.identity_access.accounts import Account
from backend.identity_access.domain import ROLE_ADMIN

from ..errors import ResourceNotFound
from ..policy import get_conversations, get_courses, path_int, require_owner_or_role, resolve_account
from ..responses import ok

chat_router = APIRouter(tags=["Chat"])
logger = logging.getLogger("polyglot.web.chat")


class MessageCreate(BaseModel):
    message: str = Field(..., max_length=MAX_MESSAGE_LENGTH)

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("message must not be empty")
        return v


def _existing_course_id(request: Request, courses: CourseRepo) -> int:
    course_id = path_int(request, "course_id")
    if courses.get_course(course_id) is None:
        raise ResourceNotFound("Course not found")
    return course_id


def _fetch_message(request: Request) -> Optional[ChatMessage]:
    course_id = path_int(request, "course_id")
    message_id = request.path_params.get("message_id") or ""
    return get_conversations(request).get(course_id, message_id)


def _message_sender(message: ChatMessage) -> int:
    return message.sender_id


_message_for_delete = require_owner_or_role(
    _fetch_message,
    owner_of=_message_sender,
    roles={ROLE_ADMIN},
    not_found_message="Message not found",
    denied_message="Not authorized to delete this message",
)


@chat_router.get("/api/chat/{course_id}", dependencies=[Depends(resolve_account)])
def list_messages(
    request: Request,
    courses: CourseRepo = Depends(get_courses),
    conversations: ConversationStore = Depends(get_conversations),
):
    course_id = _existing_course_id(request, courses)
    page = conversations.recent(course_id, limit=DEFAULT_HISTORY_LIMIT)
    return ok([m.to_dict() for m in chronological(page)])


@chat_router.post("/api/chat/{course_id}")
def post_message(
    request: Request,
    payload: MessageCreate,
    account: Account = Depends(resolve_account),
    courses: CourseRepo = Depends(get_courses),
    conversations: ConversationStore = Depends(get_conversations),
):
    """Append a message; sender identity is copied from the caller's account."""
    course_id = _existing_course_id(request, courses)
    message = conversations.append(
        course_id,
        message=payload.message,
        sender_id=account.id,
        sender_email=account.email,
        sender_role=account.role,
    )
    logger.debug("Message %s posted to course %s by account %s", message.id, course_id, account.id)
    return ok(message.to_dict(), status_code=201)


@chat_router.delete("/api/chat/{course_id}/messages/{message_id}", dependencies=[Depends(resolve_account)])
def delete_message(
    message: ChatMessage = Depends(_message_for_delete),
    conversations: ConversationStore = Depends(get_conversations),
):
    if not conversations.delete(message.course_id, message.id):
        raise ResourceNotFound("Message not found")
    logger.info("Message %s deleted from course %s", message.id, message.course_id)
    return ok(message="Message deleted successfully")


__all__ = ["chat_router"]
