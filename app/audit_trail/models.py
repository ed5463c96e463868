## app/audit_trail/models.py

# Third party imports
from sqlalchemy import Column, String, Integer, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship

# Local imports
from app.core.db import Base
from app.users.models import AuditMixin


class AuditLog(Base, AuditMixin):
    """Append-only record of a mutation made to a tracked entity"""
    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(Integer, nullable=False)
    action = Column(String(64), nullable=False)
    meta_data = Column(JSON, nullable=True, default=dict)

    actor = relationship("User", foreign_keys=[actor_id], lazy="selectin")

    def __repr__(self):
        return f"<AuditLog(id={self.id}, entity={self.entity_type}:{self.entity_id}, action='{self.action}')>"
