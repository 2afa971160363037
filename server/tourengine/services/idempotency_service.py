"""Idempotency service for replaying responses to retried requests."""

import hashlib
import json
import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import ProblemDetailsException, problem_type
from ..models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)


class IdempotencyMismatchError(ProblemDetailsException):
    """Idempotency key reused with a different request body."""

    def __init__(self, idempotency_key: str, method: str):
        super().__init__(
            status_code=422,
            title="Idempotency Key Mismatch",
            detail=f"Idempotency key '{idempotency_key}' was already used for '{method}' with a different request body",
            type_uri=problem_type("idempotency-key-mismatch"),
            extensions={
                "code": "IDEMPOTENCY_KEY_MISMATCH",
                "retryable": False,
                "idempotency_key": idempotency_key,
                "method": method,
            },
        )


def request_hash(request_body: dict[str, Any]) -> str:
    """SHA-256 of the request body with keys sorted."""
    normalized = json.dumps(request_body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class IdempotencyService:
    """Stores responses per (key, method) so a retried request gets the same answer."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check_idempotency(
        self,
        idempotency_key: str,
        method: str,
        request_body: dict[str, Any],
    ) -> Optional[tuple[int, dict[str, Any]]]:
        """
        Look up a cached response for this key and operation.

        Returns:
            (status_code, response_body) if a live record exists, None for a new request

        Raises:
            IdempotencyMismatchError: If the key was used with a different body
        """
        body_hash = request_hash(request_body)

        result = await self.db.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.idempotency_key == idempotency_key,
                IdempotencyRecord.method == method,
                IdempotencyRecord.expires_at > utcnow(),
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None

        if record.request_body_hash != body_hash:
            logger.warning(
                "Idempotency key mismatch",
                extra={
                    "idempotency_key": idempotency_key,
                    "method": method,
                    "existing_hash": record.request_body_hash[:8],
                    "new_hash": body_hash[:8],
                }
            )
            raise IdempotencyMismatchError(idempotency_key, method)

        logger.info(
            "Returning cached idempotent response",
            extra={
                "idempotency_key": idempotency_key,
                "method": method,
                "status_code": record.response_status_code,
            }
        )
        return record.response_status_code, json.loads(record.response_body)

    async def store_response(
        self,
        idempotency_key: str,
        method: str,
        request_body: dict[str, Any],
        status_code: int,
        response_body: dict[str, Any],
    ) -> None:
        """Cache a response; a record stored concurrently for the same key wins."""
        expires_at = utcnow() + timedelta(hours=settings.idempotency_ttl_hours)
        record = IdempotencyRecord(
            idempotency_key=idempotency_key,
            method=method,
            request_body_hash=request_hash(request_body),
            response_status_code=status_code,
            response_body=json.dumps(response_body, sort_keys=True, separators=(",", ":")),
            expires_at=expires_at,
        )

        try:
            self.db.add(record)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "Idempotency record already stored",
                extra={"idempotency_key": idempotency_key, "method": method}
            )
            return

        logger.info(
            "Stored idempotency record",
            extra={
                "idempotency_key": idempotency_key,
                "method": method,
                "status_code": status_code,
                "expires_at": expires_at.isoformat(),
            }
        )

    async def cleanup_expired_records(self) -> int:
        """Delete expired records. Returns the number deleted."""
        result = await self.db.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= utcnow())
        )
        await self.db.commit()

        deleted_count = result.rowcount
        if deleted_count > 0:
            logger.info(
                "Cleaned up expired idempotency records",
                extra={"deleted_count": deleted_count}
            )
        return deleted_count
