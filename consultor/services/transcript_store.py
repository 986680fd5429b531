# consultor/services/transcript_store.py
"""
Durable record of finished consultations, stored in Redis.

Layout:
    consultations:{consultation_id}     JSON transcript (written once, never overwritten)
    consultations:user:{user_id}        list of consultation ids, newest first
"""
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from consultor.core.exceptions import PersistenceError
from consultor.models.session_state import ConsultationHistoryItem, ConsultationTranscript
from consultor.services.redis_service import RedisService

logger = logging.getLogger(__name__)

CONSULTATION_KEY = "consultations:{consultation_id}"
USER_INDEX_KEY = "consultations:user:{user_id}"


class TranscriptStore:
    """Append-only persistence of consultation transcripts keyed by user"""

    def __init__(self, redis_service: Optional[RedisService] = None):
        self.redis_service = redis_service or RedisService()

    async def save(self, transcript: ConsultationTranscript) -> str:
        """
        Write a finished transcript.

        Returns:
            The id of the stored consultation

        Raises:
            PersistenceError: If storage is unavailable or the write fails
        """
        await self.redis_service.ensure_initialized()

        if not self.redis_service.is_connected():
            raise PersistenceError("Consultation storage is not available", user_id=transcript.user_id)

        consultation_id = str(uuid4())
        record = {"consultation_id": consultation_id, **transcript.model_dump(mode="json")}

        written = await self.redis_service.set(
            CONSULTATION_KEY.format(consultation_id=consultation_id),
            record,
            only_if_absent=True
        )
        if not written:
            raise PersistenceError(
                "Failed to write consultation transcript",
                user_id=transcript.user_id,
                details={"consultation_id": consultation_id}
            )

        indexed = await self.redis_service.lpush(
            USER_INDEX_KEY.format(user_id=transcript.user_id),
            consultation_id
        )
        if indexed is None:
            raise PersistenceError(
                "Transcript written but not added to the user's history",
                user_id=transcript.user_id,
                details={"consultation_id": consultation_id}
            )

        logger.info(f"Saved consultation {consultation_id} for user {transcript.user_id}")
        return consultation_id

    async def get(self, consultation_id: str) -> Optional[Dict[str, Any]]:
        await self.redis_service.ensure_initialized()
        return await self.redis_service.get(CONSULTATION_KEY.format(consultation_id=consultation_id))

    async def list_for_user(self, user_id: str, limit: int = 20) -> List[ConsultationHistoryItem]:
        """
        List a user's finished consultations, newest first.
        """
        await self.redis_service.ensure_initialized()

        ids = await self.redis_service.lrange(USER_INDEX_KEY.format(user_id=user_id), 0, limit - 1)
        if not ids:
            return []

        records = await self.redis_service.mget(
            [CONSULTATION_KEY.format(consultation_id=cid) for cid in ids]
        )

        history = []
        for record in records:
            if not isinstance(record, dict):
                continue
            history.append(ConsultationHistoryItem(
                consultation_id=record["consultation_id"],
                completed_at=record["completed_at"],
                final_diagnosis_parts=record.get("final_diagnosis_parts", []),
            ))
        return history

    async def health_check(self) -> Dict[str, Any]:
        return await self.redis_service.health_check()

    async def shutdown(self) -> None:
        await self.redis_service.shutdown()
