# app/agreements/models.py

"""
SQLAlchemy 2.x models for the Agreements module.
"""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    Boolean, String, Text, Integer, DateTime, ForeignKey, Index,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from app.core.db import Base
from app.users.models import AuditMixin


class AgreementTemplate(Base, AuditMixin):
    """
    Reusable agreement body with {{ namespace.field }} tokens.

    Templates are append-only; agreements keep pointing at the template they
    were created from.
    """
    __tablename__ = "agreement_templates"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content_richtext: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<AgreementTemplate(id={self.id}, title='{self.title}', active={self.active})>"


class Agreement(Base, AuditMixin):
    """
    Handover agreement between the operator and a driver for one vehicle.

    Status moves draft -> pending_signature -> signed, and pending_signature
    or signed -> terminated. `version` increases on every transition.
    """
    __tablename__ = "agreements"

    __table_args__ = (
        Index("idx_agreement_status", "status"),
        Index("idx_agreement_vehicle", "vehicle_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False)
    inspection_id: Mapped[int] = mapped_column(ForeignKey("vehicle_inspections.id", ondelete="RESTRICT"), nullable=False)
    template_id: Mapped[int] = mapped_column(ForeignKey("agreement_templates.id", ondelete="RESTRICT"), nullable=False)

    status: Mapped[str] = mapped_column(String(32), default="draft", nullable=False, comment="draft, pending_signature, signed, terminated")
    final_content_richtext: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Frozen content shown to the signing driver")

    assigned_driver_id: Mapped[Optional[int]] = mapped_column(ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True)
    signed_by_driver_id: Mapped[Optional[int]] = mapped_column(ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True)
    signing_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    signing_token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    driver_signature_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Signature image as a data URL")
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    termination_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    terminated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    vehicle: Mapped["Vehicle"] = relationship("Vehicle", foreign_keys=[vehicle_id], lazy="selectin")
    inspection: Mapped["VehicleInspection"] = relationship("VehicleInspection", foreign_keys=[inspection_id], lazy="selectin")
    template: Mapped["AgreementTemplate"] = relationship("AgreementTemplate", foreign_keys=[template_id], lazy="selectin")
    assigned_driver: Mapped[Optional["Driver"]] = relationship("Driver", foreign_keys=[assigned_driver_id], lazy="selectin")
    signed_by_driver: Mapped[Optional["Driver"]] = relationship("Driver", foreign_keys=[signed_by_driver_id], lazy="selectin")
    supporting_documents: Mapped[List["AgreementSupportingDocument"]] = relationship(
        "AgreementSupportingDocument",
        back_populates="agreement",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AgreementSupportingDocument.id",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Agreement(id={self.id}, status='{self.status}', vehicle_id={self.vehicle_id}, version={self.version})>"


class AgreementSupportingDocument(Base, AuditMixin):
    """
    File attached to an agreement (licence scans, insurance, photos).
    """
    __tablename__ = "agreement_supporting_documents"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    agreement_id: Mapped[int] = mapped_column(ForeignKey("agreements.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)

    agreement: Mapped["Agreement"] = relationship("Agreement", back_populates="supporting_documents")

    def __repr__(self):
        return f"<AgreementSupportingDocument(id={self.id}, agreement_id={self.agreement_id}, path='{self.path}')>"
