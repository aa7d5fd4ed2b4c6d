from __future__ import annotations

import base64
import binascii
from contextlib import asynccontextmanager, contextmanager
import logging
import os
import secrets
from typing import Awaitable, Dict, List, Optional, TypeVar

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import assistant
from .auth import (
    COOKIE_SECURE,
    GOOGLE_CALLBACK_PATH,
    OAUTH_STATE_COOKIE_NAME,
    OAUTH_STATE_TTL_SECONDS,
    SESSION_COOKIE_NAME,
    AuthContext,
    GoogleOAuthClient,
    OAuthError,
    decode_session_token,
    encode_session_token,
    encode_state_token,
    resolve_auth_context,
    start_session,
    verify_state_token,
)
from .gemini import GeminiClient, GenerationError, TextGenerator, UpstreamTimeoutError
from .prompts import (
    CodeAction,
    CreativeLanguage,
    CreativeType,
    DocumentAction,
    ImageAction,
    LanguageCode,
    Personality,
    ResponseMode,
    SearchType,
    StudyAction,
)
from .storage import (
    MAX_CATEGORY_LENGTH,
    MemoryRecord,
    MemoryValidationError,
    SessionRecord,
    Storage,
    StorageError,
    UserRecord,
    storage_from_env,
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:5173")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))
LOGIN_FAILURE_REDIRECT = "/login?error=auth_failed"

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
LOGGER = logging.getLogger("swadesh")

T = TypeVar("T")


class ApiRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


def _require_text(value: Optional[str], label: str) -> Optional[str]:
    if value is not None and not value.strip():
        raise ValueError(f"{label} cannot be empty")
    return value


class MemoryCreateRequest(ApiRequest):
    content: str
    category: Optional[str] = Field(default=None, max_length=MAX_CATEGORY_LENGTH)

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        return _require_text(value, "Memory content")


class MemoryUpdateRequest(ApiRequest):
    content: str

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        return _require_text(value, "Memory content")


class SetupRequest(ApiRequest):
    pass


class SuccessResponse(BaseModel):
    success: bool


class ChatRequest(ApiRequest):
    message: str
    personality: Personality = Personality.FRIENDLY
    context: Optional[str] = None

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        return _require_text(value, "Message")


class ChatResponse(BaseModel):
    response: str


class ToolResponse(BaseModel):
    result: str


class DocumentRequest(ApiRequest):
    content: str
    action: DocumentAction
    target_language: Optional[LanguageCode] = None

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        return _require_text(value, "Document content")


class CodeRequest(ApiRequest):
    code: Optional[str] = None
    action: CodeAction
    language: str = "javascript"
    prompt: Optional[str] = None

    @model_validator(mode="after")
    def _check_inputs(self) -> "CodeRequest":
        if self.action is CodeAction.GENERATE:
            if not self.prompt or not self.prompt.strip():
                raise ValueError("A prompt is required to generate code")
        elif not self.code or not self.code.strip():
            raise ValueError(f"Code is required for the {self.action.value} action")
        return self


class StudyRequest(ApiRequest):
    topic: str
    action: StudyAction
    grade: Optional[str] = None
    subject: Optional[str] = None

    @field_validator("topic")
    @classmethod
    def _topic_not_blank(cls, value: str) -> str:
        return _require_text(value, "Topic")


class LanguageRequest(ApiRequest):
    text: str
    source_language: LanguageCode
    target_language: LanguageCode
    transliterate: bool = False

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        return _require_text(value, "Text")


class SearchRequest(ApiRequest):
    query: str
    search_type: SearchType = Field(SearchType.GENERAL, alias="type")

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        return _require_text(value, "Query")


class ImageRequest(ApiRequest):
    image_base64: str
    action: ImageAction

    @field_validator("image_base64")
    @classmethod
    def _valid_base64(cls, value: str) -> str:
        if value.startswith("data:") and "," in value:
            value = value.split(",", 1)[1]
        value = value.strip()
        if not value:
            raise ValueError("Image data cannot be empty")
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Image data must be base64 encoded") from exc
        return value


class CreativeRequest(ApiRequest):
    content_type: CreativeType = Field(alias="type")
    prompt: str
    language: CreativeLanguage = CreativeLanguage.EN

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        return _require_text(value, "Prompt")


def _get_storage(request: Request) -> Storage:
    return request.app.state.storage


def _get_generator(request: Request) -> TextGenerator:
    return request.app.state.generator


def _request_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return request.cookies.get(SESSION_COOKIE_NAME)


def _optional_auth(
    request: Request, storage: Storage = Depends(_get_storage)
) -> Optional[AuthContext]:
    with _storage_failure("Failed to verify session"):
        return resolve_auth_context(storage, _request_token(request))


def _require_auth(
    auth: Optional[AuthContext] = Depends(_optional_auth),
) -> AuthContext:
    if auth is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return auth


@contextmanager
def _storage_failure(detail: str):
    try:
        yield
    except StorageError as exc:
        LOGGER.exception("%s: %s", detail, exc)
        raise HTTPException(status_code=500, detail=detail) from exc


async def _generate_or_fail(pending: Awaitable[T], feature: str) -> T:
    detail = assistant.FAILURE_MESSAGES[feature]
    try:
        return await pending
    except UpstreamTimeoutError as exc:
        LOGGER.warning("%s generation timed out: %s", feature, exc)
        raise HTTPException(status_code=504, detail="Upstream model timed out") from exc
    except GenerationError as exc:
        LOGGER.warning("%s generation failed: %s", feature, exc)
        raise HTTPException(status_code=500, detail=detail) from exc


def _set_session_cookie(response: RedirectResponse, session: SessionRecord) -> None:
    max_age = int((session.expires_at - session.created_at).total_seconds())
    response.set_cookie(
        SESSION_COOKIE_NAME,
        encode_session_token(session),
        max_age=max_age,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
    )


def _format_validation_error(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(
            str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")
        )
        message = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
        messages.append(f"{location}: {message}" if location else message)
    return "Validation error: " + "; ".join(messages)


router = APIRouter()


@router.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/api/auth/user", response_model=UserRecord)
def auth_user(auth: AuthContext = Depends(_require_auth)) -> UserRecord:
    return auth.user


@router.get("/api/logout")
def auth_logout(
    request: Request, storage: Storage = Depends(_get_storage)
) -> RedirectResponse:
    token = _request_token(request)
    session_id = decode_session_token(token) if token else None
    if session_id:
        with _storage_failure("Failed to log out"):
            storage.delete_session(session_id)
    response = RedirectResponse(url="/", status_code=302)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.post("/api/user/setup", response_model=SuccessResponse)
def user_setup(
    payload: Optional[SetupRequest] = None,
    auth: AuthContext = Depends(_require_auth),
    storage: Storage = Depends(_get_storage),
) -> SuccessResponse:
    with _storage_failure("Failed to update setup"):
        storage.update_user_setup(auth.user.id, True)
    return SuccessResponse(success=True)


@router.get("/api/memories", response_model=List[MemoryRecord])
def memory_list(
    auth: AuthContext = Depends(_require_auth),
    storage: Storage = Depends(_get_storage),
) -> List[MemoryRecord]:
    with _storage_failure("Failed to fetch memories"):
        return storage.list_memories(auth.user.id)


@router.post("/api/memories", response_model=MemoryRecord)
def memory_create(
    payload: MemoryCreateRequest,
    auth: AuthContext = Depends(_require_auth),
    storage: Storage = Depends(_get_storage),
) -> MemoryRecord:
    with _storage_failure("Failed to create memory"):
        try:
            return storage.create_memory(auth.user.id, payload.content, payload.category)
        except MemoryValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.patch("/api/memories/{memory_id}", response_model=MemoryRecord)
def memory_update(
    memory_id: str,
    payload: MemoryUpdateRequest,
    auth: AuthContext = Depends(_require_auth),
    storage: Storage = Depends(_get_storage),
) -> MemoryRecord:
    with _storage_failure("Failed to update memory"):
        try:
            record = storage.update_memory(memory_id, auth.user.id, payload.content)
        except MemoryValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="Memory not found")
    return record


@router.delete("/api/memories/{memory_id}", response_model=SuccessResponse)
def memory_delete(
    memory_id: str,
    auth: AuthContext = Depends(_require_auth),
    storage: Storage = Depends(_get_storage),
) -> SuccessResponse:
    with _storage_failure("Failed to delete memory"):
        deleted = storage.delete_memory(memory_id, auth.user.id)
    return SuccessResponse(success=deleted)


async def _memory_context(
    storage: Storage, auth: Optional[AuthContext], context: Optional[str]
) -> Optional[str]:
    contents: List[str] = []
    if auth is not None:
        with _storage_failure("Failed to generate response"):
            memories = await run_in_threadpool(storage.list_memories, auth.user.id)
        contents = [memory.content for memory in memories]
    return assistant.build_chat_context(contents, context)


async def _chat_reply(
    payload: ChatRequest,
    mode: ResponseMode,
    storage: Storage,
    generator: TextGenerator,
    auth: Optional[AuthContext],
) -> ChatResponse:
    context = await _memory_context(storage, auth, payload.context)
    reply = await _generate_or_fail(
        assistant.chat(generator, payload.message, payload.personality, context, mode),
        "chat",
    )
    return ChatResponse(response=reply)


@router.post("/api/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    auth: Optional[AuthContext] = Depends(_optional_auth),
    storage: Storage = Depends(_get_storage),
    generator: TextGenerator = Depends(_get_generator),
) -> ChatResponse:
    return await _chat_reply(payload, ResponseMode.CHAT, storage, generator, auth)


@router.post("/api/voice-chat", response_model=ChatResponse)
async def voice_chat(
    payload: ChatRequest,
    auth: Optional[AuthContext] = Depends(_optional_auth),
    storage: Storage = Depends(_get_storage),
    generator: TextGenerator = Depends(_get_generator),
) -> ChatResponse:
    return await _chat_reply(payload, ResponseMode.VOICE, storage, generator, auth)


@router.post("/api/tools/document", response_model=ToolResponse)
async def tool_document(
    payload: DocumentRequest,
    generator: TextGenerator = Depends(_get_generator),
) -> ToolResponse:
    result = await _generate_or_fail(
        assistant.analyze_document(
            generator, payload.content, payload.action, payload.target_language
        ),
        "document",
    )
    return ToolResponse(result=result)


@router.post("/api/tools/code", response_model=ToolResponse)
async def tool_code(
    payload: CodeRequest,
    generator: TextGenerator = Depends(_get_generator),
) -> ToolResponse:
    result = await _generate_or_fail(
        assistant.analyze_code(
            generator,
            payload.action,
            code=payload.code,
            language=payload.language or "javascript",
            prompt=payload.prompt,
        ),
        "code",
    )
    return ToolResponse(result=result)


@router.post("/api/tools/study", response_model=ToolResponse)
async def tool_study(
    payload: StudyRequest,
    generator: TextGenerator = Depends(_get_generator),
) -> ToolResponse:
    result = await _generate_or_fail(
        assistant.study_assistant(
            generator, payload.topic, payload.action, payload.grade, payload.subject
        ),
        "study",
    )
    return ToolResponse(result=result)


@router.post("/api/tools/language", response_model=ToolResponse)
async def tool_language(
    payload: LanguageRequest,
    generator: TextGenerator = Depends(_get_generator),
) -> ToolResponse:
    result = await _generate_or_fail(
        assistant.translate_text(
            generator,
            payload.text,
            payload.source_language,
            payload.target_language,
            payload.transliterate,
        ),
        "language",
    )
    return ToolResponse(result=result)


@router.post("/api/tools/search", response_model=assistant.SearchResult)
async def tool_search(
    payload: SearchRequest,
    generator: TextGenerator = Depends(_get_generator),
) -> assistant.SearchResult:
    return await _generate_or_fail(
        assistant.search_and_summarize(generator, payload.query, payload.search_type),
        "search",
    )


@router.post("/api/tools/image", response_model=ToolResponse)
async def tool_image(
    payload: ImageRequest,
    generator: TextGenerator = Depends(_get_generator),
) -> ToolResponse:
    result = await _generate_or_fail(
        assistant.analyze_image(generator, payload.image_base64, payload.action),
        "image",
    )
    return ToolResponse(result=result)


@router.post("/api/tools/creative", response_model=ToolResponse)
async def tool_creative(
    payload: CreativeRequest,
    generator: TextGenerator = Depends(_get_generator),
) -> ToolResponse:
    result = await _generate_or_fail(
        assistant.generate_creative_content(
            generator, payload.content_type, payload.prompt, payload.language
        ),
        "creative",
    )
    return ToolResponse(result=result)


def _build_oauth_router(google: GoogleOAuthClient) -> APIRouter:
    oauth_router = APIRouter()

    @oauth_router.get("/api/login")
    def auth_login() -> RedirectResponse:
        state = secrets.token_urlsafe(16)
        response = RedirectResponse(url=google.authorization_url(state), status_code=302)
        response.set_cookie(
            OAUTH_STATE_COOKIE_NAME,
            encode_state_token(state),
            max_age=OAUTH_STATE_TTL_SECONDS,
            httponly=True,
            secure=COOKIE_SECURE,
            samesite="lax",
        )
        return response

    @oauth_router.get(GOOGLE_CALLBACK_PATH)
    async def auth_google_callback(
        request: Request,
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
    ) -> RedirectResponse:
        if error:
            LOGGER.warning("Google login was not completed: %s", error)
            return RedirectResponse(url=LOGIN_FAILURE_REDIRECT, status_code=302)
        state_cookie = request.cookies.get(OAUTH_STATE_COOKIE_NAME)
        if not code or not state or not verify_state_token(state_cookie, state):
            raise HTTPException(status_code=400, detail="Invalid OAuth state.")
        try:
            profile = await google.fetch_profile(code)
        except OAuthError as exc:
            LOGGER.warning("Google login failed: %s", exc)
            raise HTTPException(status_code=500, detail="Authentication failed") from exc

        storage = _get_storage(request)
        with _storage_failure("Authentication failed"):
            user = await run_in_threadpool(storage.upsert_user, profile.to_user_upsert())
            session = await run_in_threadpool(start_session, storage, user)
        LOGGER.info("User %s signed in", user.id)
        response = RedirectResponse(url="/", status_code=302)
        _set_session_cookie(response, session)
        response.delete_cookie(OAUTH_STATE_COOKIE_NAME)
        return response

    return oauth_router


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": _format_validation_error(exc)})


async def _http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    key = "message" if exc.status_code == 401 else "error"
    return JSONResponse(
        status_code=exc.status_code,
        content={key: exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@asynccontextmanager
async def _lifespan(app: FastAPI):
    storage: Storage = app.state.storage
    try:
        await run_in_threadpool(storage.ensure_schema)
        purged = await run_in_threadpool(storage.purge_expired_sessions)
        if purged:
            LOGGER.info("Purged %d expired sessions", purged)
    except StorageError as exc:
        LOGGER.warning("Storage initialisation failed: %s", exc)
    yield


def create_app(
    storage: Storage,
    generator: TextGenerator,
    google_oauth: Optional[GoogleOAuthClient] = None,
) -> FastAPI:
    app = FastAPI(title="Swadesh AI Backend", version="0.1.0", lifespan=_lifespan)
    app.state.storage = storage
    app.state.generator = generator
    app.state.google_oauth = google_oauth

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[FRONTEND_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)
    if google_oauth is not None:
        app.include_router(_build_oauth_router(google_oauth))
    else:
        LOGGER.warning("Login routes disabled: Google OAuth is not configured.")

    if isinstance(generator, GeminiClient) and not generator.api_key:
        LOGGER.warning("GEMINI_API_KEY is not set; AI features will fail.")
    return app


app = create_app(
    storage=storage_from_env(),
    generator=GeminiClient(),
    google_oauth=GoogleOAuthClient.from_env(),
)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())
