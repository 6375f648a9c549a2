"""Service container owning the long-lived clients.

Everything with a network connection or background task is constructed
here and started/stopped from the application lifespan, so request handlers
receive ready objects through dependencies instead of importing singletons.
"""

from typing import Optional
from uuid import UUID

from veridicus.core.config import Settings
from veridicus.core.database import DatabaseClient
from veridicus.core.gemini_client import GeminiForensicClient
from veridicus.core.jwks import JWKSService
from veridicus.core.jwt import JWTVerifier
from veridicus.repositories.evidence_repository import EvidenceRepository
from veridicus.services.evidence_processor import EvidenceProcessor
from veridicus.services.storage_service import StorageService
from veridicus.services.task_queue import EvidenceTaskQueue
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

UNFINISHED_STATUSES = ("pending", "processing")
ATTEMPTS_EXHAUSTED_ERROR = "Processing attempts exhausted before restart"


class ServiceContainer:
    """Holds and manages the lifecycle of shared service objects."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.jwks_service = JWKSService(
            supabase_url=settings.supabase_url,
            cache_ttl=settings.supabase_jwks_cache_ttl,
        )
        self.jwt_verifier = JWTVerifier(
            supabase_url=settings.supabase_url,
            jwks_service=self.jwks_service,
            jwt_secret=settings.supabase_jwt_secret,
        )
        self.database: Optional[DatabaseClient] = None
        self.storage: Optional[StorageService] = None
        self.gemini: Optional[GeminiForensicClient] = None
        self.task_queue: Optional[EvidenceTaskQueue] = None

    def build_gemini(self) -> Optional[GeminiForensicClient]:
        llm = self.settings.llm
        if not llm.gemini_api_key:
            LOGGER.error("GEMINI_API_KEY is missing; reasoning and extraction are disabled")
            return None
        return GeminiForensicClient(
            api_key=llm.gemini_api_key,
            pro_model=llm.pro_model,
            flash_model=llm.flash_model,
            live_model=llm.live_model,
            temperature=llm.temperature,
            cached_temperature=llm.cached_temperature,
            max_output_tokens=llm.max_output_tokens,
            max_retries=llm.max_retries,
        )

    async def startup(self) -> None:
        settings = self.settings
        policy = settings.policy

        self.database = DatabaseClient(settings.db)
        try:
            await self.database.connect()
            if settings.db.auto_migrate:
                await self.database.create_tables()
        except Exception as e:
            # Keep serving; /health reports the database as unavailable
            LOGGER.error(f"Database initialization failed: {e}", exc_info=True)

        self.storage = StorageService(
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            bucket=settings.supabase.evidence_bucket,
            timeout=settings.http_timeout,
        )
        self.gemini = self.build_gemini()

        self.task_queue = EvidenceTaskQueue(
            handler=self.process_evidence,
            workers=policy.processing_workers,
            max_attempts=policy.processing_max_attempts,
            retry_delay=policy.processing_retry_delay_seconds,
        )
        self.task_queue.start()
        await self.recover_unfinished_evidence()

        LOGGER.info("Service container started")

    async def shutdown(self) -> None:
        if self.task_queue is not None:
            await self.task_queue.stop()
        if self.gemini is not None:
            await self.gemini.close()
        if self.database is not None:
            await self.database.disconnect()
        LOGGER.info("Service container stopped")

    async def process_evidence(self, evidence_id: UUID, final_attempt: bool) -> None:
        """Task queue handler: run extraction in its own session."""
        async with self.database.session() as session:
            processor = EvidenceProcessor(session, self.storage, self.gemini)
            await processor.process(evidence_id, final_attempt=final_attempt)

    async def recover_unfinished_evidence(self) -> int:
        """Re-enqueue rows a previous process left unfinished.

        Rows that already used every attempt are marked ``failed``.

        Returns:
            Number of jobs enqueued
        """
        try:
            async with self.database.session() as session:
                evidence_repo = EvidenceRepository(session)
                rows = await evidence_repo.list_unfinished(UNFINISHED_STATUSES)
                exhausted = self.task_queue.recover(rows)
                for evidence_id in exhausted:
                    await evidence_repo.mark_failed(evidence_id, ATTEMPTS_EXHAUSTED_ERROR)
        except Exception as e:
            LOGGER.error(f"Could not recover unfinished evidence jobs: {e}", exc_info=True)
            return 0
        return len(rows) - len(exhausted)
