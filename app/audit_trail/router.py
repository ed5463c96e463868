## app/audit_trail/router.py

# Standard library imports
from typing import Optional

# Third party imports
from fastapi import APIRouter, Depends, Query

# Local application imports
from app.utils.logger import get_logger
from app.users.models import User
from app.users.utils import require_operator
from app.audit_trail.schemas import AuditLogResponse, PaginatedAuditLogResponse
from app.audit_trail.services import AuditTrailService

router = APIRouter(prefix="/audit-trail", tags=["Audit Trail"])
logger = get_logger(__name__)


@router.get("", response_model=PaginatedAuditLogResponse)
async def list_audit_logs(
    entity_type: Optional[str] = Query(None, description="e.g. agreement, agreement_template"),
    entity_id: Optional[int] = Query(None, description="Entity primary key"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    service: AuditTrailService = Depends(),
    current_user: User = Depends(require_operator),
) -> PaginatedAuditLogResponse:
    """
    Audit entries for an entity, newest first
    """
    logger.info("Listing audit logs", user_id=current_user.id, entity_type=entity_type, entity_id=entity_id)
    items, total_items = await service.list_for_entity(entity_type, entity_id, page, per_page)
    total_pages = (total_items + per_page - 1) // per_page

    return PaginatedAuditLogResponse(
        items=[AuditLogResponse.model_validate(item) for item in items],
        total_items=total_items,
        page=page,
        per_page=per_page,
        total_pages=total_pages,
    )
