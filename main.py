# libraries
import json
import logging
from urllib.parse import urlparse

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from openai import OpenAI
from sse_starlette.sse import EventSourceResponse

# modules
import schemas
from backend import SupabaseBackend
from config import settings
from conversation import Conversation
from errors import AssistantError, InvalidUrlError, MissingCredentialsError, ModelServiceError
from executor import DataOperationExecutor
from orchestrator import Orchestrator

# prompts
# SYSTEM_PROMPT: persona + how to use the database tools
# *_MESSAGE: canned answers for requests that never reach the model
from prompts import (
    INVALID_KEY_MESSAGE,
    INVALID_URL_MESSAGE,
    MISSING_CREDENTIALS_MESSAGE,
    RATE_LIMIT_MESSAGE,
    SERVER_ERROR_MESSAGE,
    SYSTEM_PROMPT,
)


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# fastapi app instance
app = FastAPI(title="AI Database Assistant")

# super permissive CORS so any frontend can call this from anywhere
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# sent on bare OPTIONS requests, which the middleware only answers for real preflights
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

_CANNED_MESSAGES = {
    "missing_credentials": MISSING_CREDENTIALS_MESSAGE,
    "invalid_url": INVALID_URL_MESSAGE,
    "invalid_key": INVALID_KEY_MESSAGE,
    "rate_limit": RATE_LIMIT_MESSAGE,
}


def error_body(exc: AssistantError) -> dict:
    message = _CANNED_MESSAGES.get(exc.kind) or SERVER_ERROR_MESSAGE.format(detail=exc.message)
    return {"error": exc.kind, "response": message}


@app.exception_handler(AssistantError)
async def assistant_error_handler(_, exc: AssistantError):
    logger.warning("request failed: %s (%s)", exc.kind, exc.message)
    return JSONResponse(error_body(exc), status_code=exc.status_code)


# ----------------------------------------------------------------------
# dependencies
# ----------------------------------------------------------------------


def get_model_client() -> OpenAI | None:
    """
    openai client for the configured model service, or None when no key
    is configured (reported per request, after the connection checks).
    """
    if not settings.OPENAI_API_KEY:
        return None
    return OpenAI(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL or None,
        timeout=settings.MODEL_TIMEOUT_SECONDS,
    )


def get_backend_factory():
    """callable building a fresh backend handle from one request's credentials"""

    def factory(url: str, key: str) -> SupabaseBackend:
        return SupabaseBackend(
            url,
            key,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
            sql_function=settings.SQL_FUNCTION_NAME,
        )

    return factory


# ----------------------------------------------------------------------
# connection pre-flight
# ----------------------------------------------------------------------


def _host_allowed(hostname: str, allowed: list[str]) -> bool:
    hostname = hostname.lower()
    for pattern in allowed:
        pattern = pattern.lower().lstrip(".")
        if hostname == pattern or hostname.endswith("." + pattern):
            return True
    return False


def validate_endpoint(url: str):
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InvalidUrlError(f"not an http(s) url: {url!r}")
    allowed = settings.ALLOWED_BACKEND_HOSTS
    if allowed and not _host_allowed(parsed.hostname, allowed):
        raise InvalidUrlError(f"host {parsed.hostname!r} is not an allowed backend host")


def open_backend(payload: schemas.ChatRequest, factory):
    """
    check the caller's connection settings and return a live backend handle.

    behavior:
    - missing url or key -> MissingCredentialsError
    - url that isn't an http(s) url on an allowed host -> InvalidUrlError
    - one probe query; a rejected key -> InvalidKeyError,
      an unreachable host -> InvalidUrlError

    none of these ever contact the model.
    """
    endpoint = (payload.connectionEndpoint or "").strip()
    credential = (payload.connectionCredential or "").strip()
    if not endpoint or not credential:
        raise MissingCredentialsError("connection endpoint or credential missing")

    validate_endpoint(endpoint)

    backend = factory(endpoint, credential)
    try:
        backend.probe()
    except AssistantError:
        backend.close()
        raise
    except Exception as e:
        backend.close()
        logger.exception("connection check failed")
        raise AssistantError(f"connection check failed: {e}") from e
    return backend


def build_orchestrator(client, backend) -> Orchestrator:
    executor = DataOperationExecutor(
        backend,
        default_limit=settings.DEFAULT_SELECT_LIMIT,
        max_limit=settings.MAX_SELECT_LIMIT,
        sql_function=settings.SQL_FUNCTION_NAME or None,
    )
    return Orchestrator(
        client,
        executor,
        model=settings.MODEL_NAME,
        max_iterations=settings.MAX_TOOL_ITERATIONS,
        max_parallel_calls=settings.MAX_PARALLEL_TOOL_CALLS,
    )


def new_conversation(payload: schemas.ChatRequest) -> Conversation:
    # prior turns first, then the new message(s); the caller keeps history, not us
    conversation = Conversation(SYSTEM_PROMPT, payload.conversationHistory)
    for message in payload.messages:
        if message.role == "user":
            conversation.add_user(message.content or "")
        elif message.role == "assistant":
            conversation.add_assistant(message.content)
    return conversation


def _require_client(client):
    if client is None:
        raise ModelServiceError("no model api key configured, set OPENAI_API_KEY")
    return client


# ----------------------------------------------------------------------
# routes
# ----------------------------------------------------------------------


@app.get("/health")
def health():
    return {"status": "ok"}


@app.options("/chat")
@app.options("/chat/stream")
def preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@app.post(
    "/chat",
    response_model=schemas.ChatResponse,
    responses={
        400: {"model": schemas.ErrorResponse},
        401: {"model": schemas.ErrorResponse},
        429: {"model": schemas.ErrorResponse},
        500: {"model": schemas.ErrorResponse},
        502: {"model": schemas.ErrorResponse},
    },
)
def chat(
    payload: schemas.ChatRequest,
    client=Depends(get_model_client),
    backend_factory=Depends(get_backend_factory),
):
    """
    answer one user request.

    the backend handle lives exactly as long as this request; the
    conversation is rebuilt from the request body every time.
    """
    backend = open_backend(payload, backend_factory)
    with backend:
        try:
            orchestrator = build_orchestrator(_require_client(client), backend)
            answer = orchestrator.run(new_conversation(payload))
        except AssistantError:
            raise
        except Exception as e:
            logger.exception("chat request failed")
            raise AssistantError(str(e)) from e
    return {"response": answer}


@app.post("/chat/stream")
def chat_stream(
    payload: schemas.ChatRequest,
    client=Depends(get_model_client),
    backend_factory=Depends(get_backend_factory),
):
    """
    server-sent-events variant of /chat.

    streams out:
    - "tool" events for every executed tool call (name, arguments, result envelope)
    - one "token" event with the final answer
    - an "error" event ({error, response}) if the request fails
    - a "done" event at the end
    """

    def event_generator():
        try:
            backend = open_backend(payload, backend_factory)
        except AssistantError as e:
            yield {"event": "error", "data": json.dumps(error_body(e))}
            yield {"event": "done", "data": "[DONE]"}
            return

        with backend:
            try:
                orchestrator = build_orchestrator(_require_client(client), backend)
                for event in orchestrator.run_events(new_conversation(payload)):
                    if event["type"] == "tool":
                        yield {"event": "tool", "data": json.dumps(event, default=str)}
                    else:
                        yield {"event": "token", "data": event["content"]}
            except AssistantError as e:
                logger.warning("stream failed: %s (%s)", e.kind, e.message)
                yield {"event": "error", "data": json.dumps(error_body(e))}
            except Exception as e:
                logger.exception("stream failed")
                yield {"event": "error", "data": json.dumps(error_body(AssistantError(str(e))))}

        # signal that streaming is done
        yield {"event": "done", "data": "[DONE]"}

    return EventSourceResponse(event_generator())
