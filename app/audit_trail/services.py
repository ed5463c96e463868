## app/audit_trail/services.py

# Standard library imports
from typing import Any, Dict, List, Optional, Tuple

# Third party imports
from fastapi import Depends
from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

# Local imports
from app.core.db import get_async_db
from app.utils.logger import get_logger
from app.audit_trail.models import AuditLog

logger = get_logger(__name__)


class AuditTrailService:
    """Service for audit trail operations"""

    def __init__(self, db: AsyncSession = Depends(get_async_db)):
        self.db = db

    async def record(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: Optional[int] = None,
        meta_data: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Stage an audit entry in the caller's transaction.

        The entry is flushed but not committed, so it lands atomically with
        the mutation it describes.
        """
        entry = AuditLog(
            actor_id=actor_id,
            entity_type=getattr(entity_type, "value", entity_type),
            entity_id=entity_id,
            action=getattr(action, "value", action),
            meta_data=meta_data or {},
            created_by=actor_id,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.debug("Audit entry staged", entity_type=entry.entity_type, entity_id=entity_id, action=entry.action)
        return entry

    async def list_for_entity(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Tuple[List[AuditLog], int]:
        """Audit entries, newest first, optionally scoped to one entity"""
        query = select(AuditLog)
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.where(AuditLog.entity_id == entity_id)

        total_items = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar() or 0

        query = query.order_by(desc(AuditLog.id)).offset((page - 1) * per_page).limit(per_page)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total_items
