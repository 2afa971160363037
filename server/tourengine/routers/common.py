"""Helpers shared by the RPC routers."""

import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import (
    get_current_guide,
    get_idempotency_key,
    get_notifier,
    get_payment_gateway,
)
from ..core.exceptions import ProblemDetailsException
from ..services.idempotency_service import IdempotencyService

logger = logging.getLogger(__name__)

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
GUIDE_DEPENDENCY = Depends(get_current_guide)
IDEMPOTENCY_KEY_DEPENDENCY = Depends(get_idempotency_key)
NOTIFIER_DEPENDENCY = Depends(get_notifier)
PAYMENT_GATEWAY_DEPENDENCY = Depends(get_payment_gateway)


def internal_error(message: str, e: Exception, **context: Any) -> HTTPException:
    """Log an unexpected failure and build the opaque 500 raised in its place."""
    logger.error(message, extra={**context, "error": str(e)}, exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


def ok(content: Any) -> JSONResponse:
    """200 response for a pydantic model or a plain dict."""
    if hasattr(content, "model_dump"):
        content = content.model_dump(mode="json")
    return JSONResponse(status_code=200, content=content)


async def handle_idempotent_operation(
    method: str,
    idempotency_key: Optional[str],
    request_body: dict[str, Any],
    operation_func: Callable[[], Awaitable[dict[str, Any]]],
    db: AsyncSession,
) -> JSONResponse:
    """
    Run an operation once per Idempotency-Key.

    Without a key the operation simply runs. With a key, a stored response
    (success or problem) is replayed for a repeat of the same request.
    """
    if idempotency_key is None:
        return JSONResponse(status_code=200, content=await operation_func())

    idempotency_service = IdempotencyService(db)

    cached_response = await idempotency_service.check_idempotency(
        idempotency_key=idempotency_key,
        method=method,
        request_body=request_body
    )
    if cached_response:
        status_code, response_body = cached_response
        return JSONResponse(status_code=status_code, content=response_body)

    try:
        response_dict = await operation_func()
    except ProblemDetailsException as e:
        await db.rollback()
        await idempotency_service.store_response(
            idempotency_key=idempotency_key,
            method=method,
            request_body=request_body,
            status_code=e.status_code,
            response_body=e.problem_details
        )
        raise

    await idempotency_service.store_response(
        idempotency_key=idempotency_key,
        method=method,
        request_body=request_body,
        status_code=200,
        response_body=response_dict
    )
    return JSONResponse(status_code=200, content=response_dict)
