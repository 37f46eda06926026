"""
Moderation audit log.

One immutable row per accepted moderation request. The input text itself is
never stored; only its SHA-256 digest and, for tenants that opted in, a
truncated preview.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.schemas.moderation import NormalizedModerationResult
from app.store.database import Database
from app.store.models import ModerationLog, new_id, utcnow

logger = logging.getLogger(__name__)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def build_input_preview(text: str, max_length: int = 300) -> str:
    """Text up to `max_length` characters, truncated with an ellipsis beyond that."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "…"


@dataclass(frozen=True)
class LogRecord:
    """Identifier and timestamp of a written log row."""

    id: str
    created_at: datetime


class AuditLogWriter:
    """Writes moderation log rows. Rows are never updated afterwards."""

    def __init__(self, database: Database, preview_max_length: int = 300) -> None:
        self._database = database
        self._preview_max_length = preview_max_length

    async def write(
        self,
        *,
        org_id: str,
        api_key_id: str | None,
        model_key: str,
        text: str,
        result: NormalizedModerationResult,
        raw_response: Any,
        store_input_preview: bool = False,
        created_at: datetime | None = None,
    ) -> LogRecord:
        """
        Persist one moderation log row and commit.

        Raises:
            SQLAlchemyError: If the row could not be written.
        """
        log = ModerationLog(
            id=new_id(),
            org_id=org_id,
            api_key_id=api_key_id,
            created_at=created_at or utcnow(),
            model_key=model_key,
            provider=result.provider,
            provider_model=result.provider_model,
            input_hash=sha256_hex(text),
            input_preview=(
                build_input_preview(text, self._preview_max_length)
                if store_input_preview
                else None
            ),
            raw_response=raw_response,
            normalized=result.model_dump(mode="json"),
            decision=result.decision.value,
        )

        async with self._database.session() as session:
            session.add(log)
            await session.commit()

        logger.debug(f"Wrote moderation log {log.id} for org {org_id}")
        return LogRecord(id=log.id, created_at=log.created_at)
