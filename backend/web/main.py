"Polyglot course platform API"
from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from backend.chat.store import ConversationStore, InMemoryConversationStore
from backend.courses.repo import CourseRepo, InMemoryCourseRepo
from backend.identity_access.accounts import AccountStore, InMemoryAccountStore
from backend.identity_access.tokens import FirebaseTokenVerifier, IdentityVerifier, load_firebase_config

from .config import Settings, configure_logging, ensure_secure_config_on_startup, should_load_dotenv
from .errors import PRIVATE_HEADERS, install_error_handlers
from .responses import json_private
from .routes.auth import auth_router
from .routes.chat import chat_router
from .routes.courses import courses_router

logger = logging.getLogger("polyglot.web")
access_logger = logging.getLogger("polyglot.web.access")


def create_app(
    *,
    accounts: AccountStore,
    courses: CourseRepo,
    conversations: ConversationStore,
    verifier: IdentityVerifier,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the API around injected capabilities.

    Stores and the token verifier are placed on `app.state`; the mediation
    dependencies read them from there on every request.
    """
    settings = settings or Settings()
    app = FastAPI(title="Polyglot", description="Language-learning course platform API", version="1.0.0")
    app.state.accounts = accounts
    app.state.courses = courses
    app.state.conversations = conversations
    app.state.verifier = verifier
    app.state.settings = settings

    install_error_handlers(app, settings)

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            # The server error handler answers outside this middleware; record the 500 here.
            access_logger.info(
                "%s %s %s %.1fms id=%s",
                request.method,
                request.url.path,
                500,
                (time.perf_counter() - started) * 1000,
                request_id,
            )
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000
        for name, value in PRIVATE_HEADERS.items():
            response.headers.setdefault(name, value)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers["X-Request-ID"] = request_id
        access_logger.info(
            "%s %s %s %.1fms id=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    app.include_router(auth_router)
    app.include_router(courses_router)
    app.include_router(chat_router)

    @app.get("/health")
    async def health_check():
        # Liveness only; never touches the stores.
        return json_private({"success": True, "status": "healthy", "message": "Server is healthy"})

    return app


def _memory_stores() -> tuple[AccountStore, CourseRepo, ConversationStore]:
    accounts = InMemoryAccountStore()
    return accounts, InMemoryCourseRepo(accounts=accounts), InMemoryConversationStore()


def _durable_stores() -> tuple[AccountStore, CourseRepo, ConversationStore]:
    from backend.chat.store_mongo import MongoConversationStore
    from backend.courses.repo_db import DBCourseRepo
    from backend.identity_access.accounts_db import DBAccountStore

    accounts = DBAccountStore()
    courses = DBCourseRepo()
    conversations = MongoConversationStore()
    # Bootstrap DDL is idempotent; users must exist before courses reference it.
    accounts.ensure_schema()
    courses.ensure_schema()
    conversations.ensure_indexes()
    return accounts, courses, conversations


def build_default_app() -> FastAPI:
    """Wire the app from the environment (used by the ASGI entry point)."""
    if should_load_dotenv():
        load_dotenv()
    settings = Settings()
    configure_logging(settings)
    ensure_secure_config_on_startup(settings)
    if settings.stores_backend == "db":
        accounts, courses, conversations = _durable_stores()
    else:
        if settings.stores_backend != "memory":
            logger.warning("Unknown STORES_BACKEND=%s; using in-memory stores", settings.stores_backend)
        accounts, courses, conversations = _memory_stores()
    verifier = FirebaseTokenVerifier(load_firebase_config())
    logger.info("Polyglot API starting (env=%s, stores=%s)", settings.environment, settings.stores_backend)
    return create_app(
        accounts=accounts,
        courses=courses,
        conversations=conversations,
        verifier=verifier,
        settings=settings,
    )


app = build_default_app()
