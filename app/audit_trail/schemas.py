## app/audit_trail/schemas.py

# Standard library imports
from enum import Enum as PyEnum
from datetime import datetime
from typing import Any, Dict, List, Optional

# Third party imports
from pydantic import BaseModel, ConfigDict


class AuditEntityType(str, PyEnum):
    """Entity types that are written to the audit log"""
    AGREEMENT = "agreement"
    AGREEMENT_TEMPLATE = "agreement_template"


class AuditAction(str, PyEnum):
    """Actions recorded against agreements and templates"""
    CREATE = "create"
    FINALIZE = "finalize"
    LINK_INSPECTION = "link_inspection"
    SIGN = "sign"
    TERMINATE = "terminate"
    DELETE = "delete"
    ATTACH_DOCUMENT = "attach_document"
    DETACH_DOCUMENT = "detach_document"


class AuditLogResponse(BaseModel):
    """Audit log entry"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: Optional[int] = None
    entity_type: str
    entity_id: int
    action: str
    meta_data: Optional[Dict[str, Any]] = None
    created_on: Optional[datetime] = None


class PaginatedAuditLogResponse(BaseModel):
    """Paginated audit log entries"""
    items: List[AuditLogResponse]
    total_items: int
    page: int
    per_page: int
    total_pages: int
