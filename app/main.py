import time
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from app.core.config import settings
from app.core.logging import setup_logging, request_id_ctx
from app.api.router import api_router
from app.core.db import init_models
from app.core.redis import redis_manager
import asyncio
import logging

from app.modules.messaging.errors import (
    MessagingError, InvalidMessageRequest, TemplateNotFound, RecipientNotFound,
    TemplateValidationError, VariableValidationError, RateLimitExceeded, WebhookVerificationError,
)
from app.modules.messaging.worker import run_scheduler


setup_logging()
app = FastAPI(title=settings.APP_NAME)

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id", "-")
    request_id_ctx.set(rid)
    response = await call_next(request)
    return response


logger = logging.getLogger(__name__)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    formatted_process_time = f"{process_time:.2f}ms"

    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {formatted_process_time}"
    )

    return response

ERROR_STATUS = [
    (InvalidMessageRequest, 400),
    (VariableValidationError, 400),
    (TemplateNotFound, 404),
    (RecipientNotFound, 404),
    (TemplateValidationError, 422),
    (RateLimitExceeded, 429),
    (WebhookVerificationError, 401),
]

@app.exception_handler(MessagingError)
async def messaging_exception_handler(request: Request, exc: MessagingError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 400)
    content = {"code": exc.code, "message": str(exc)}
    if getattr(exc, "errors", None):
        content["errors"] = exc.errors
    headers = None
    if isinstance(exc, RateLimitExceeded):
        content["channel"] = exc.channel
        headers = {"Retry-After": str(max(1, int(exc.retry_after)))}
    if status_code == 401:
        logger.warning(f"Rejected webhook {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content=content, headers=headers)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"message": "An internal server error occurred."},
    )


@app.on_event("startup")
async def on_startup():
    await init_models()
    await redis_manager.connect()
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler_task = asyncio.create_task(run_scheduler())

@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "scheduler_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await redis_manager.close()


app.include_router(api_router, prefix=settings.API_PREFIX)
