from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from veridicus.database.models import AuditLog
from veridicus.repositories.base_repository import BaseRepository


class AuditLogRepository(BaseRepository[AuditLog]):
    """Append-only audit trail."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AuditLog)

    async def log_action(
        self,
        case_id: UUID,
        user_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        return await self.create(
            case_id=case_id, user_id=user_id, action=action, details=details or {}
        )

    async def list_for_case(self, case_id: UUID, limit: int = 200) -> List[AuditLog]:
        try:
            result = await self.session.execute(
                select(AuditLog)
                .where(AuditLog.case_id == case_id)
                .order_by(AuditLog.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("listing", e) from e
