# app/agreements/schemas.py

"""
Pydantic schemas for the Agreements module.

Each mutating operation has its own closed input model; unknown fields are
rejected before the request reaches the service layer.
"""

from datetime import datetime, date
from typing import Optional, List
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict, field_validator


# === Enums ===

class AgreementStatus(str, Enum):
    """Agreement lifecycle status."""
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    SIGNED = "signed"
    TERMINATED = "terminated"


class CommandModel(BaseModel):
    """Base for operation inputs"""
    model_config = ConfigDict(extra="forbid")


# === Template Schemas ===

class AgreementTemplateCreate(CommandModel):
    """Schema for creating an agreement template."""
    title: str = Field(..., max_length=255)
    content_richtext: str
    active: bool = True

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return v.strip()


class AgreementTemplateSummary(BaseModel):
    """Template row for listings."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    active: bool
    created_on: Optional[datetime] = None
    updated_on: Optional[datetime] = None


class AgreementTemplateResponse(AgreementTemplateSummary):
    """Template with its body."""
    content_richtext: str
    created_by: Optional[int] = None


class DefaultTemplateResponse(BaseModel):
    """Stock template offered when authoring a new one."""
    title: str
    content_richtext: str
    tokens: List[str]


# === Agreement Inputs ===

class AgreementCreate(CommandModel):
    """Create a draft agreement from a vehicle, inspection and template."""
    vehicle_id: int
    inspection_id: int
    template_id: int


class AgreementFinalise(CommandModel):
    """Freeze content and send the agreement to a driver for signing."""
    driver_id: int
    content: Optional[str] = Field(None, description="Edited content; blank uses the rendered template")


class InspectionLink(CommandModel):
    """Point an unsigned agreement at another inspection of the same vehicle."""
    inspection_id: int
    reason: Optional[str] = Field(None, max_length=1000)


class AgreementTerminate(CommandModel):
    """Terminate a pending or signed agreement."""
    reason: Optional[str] = Field(None, max_length=1000)
    notify_driver: bool = True

    @field_validator("reason")
    @classmethod
    def blank_reason_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class AgreementSign(CommandModel):
    """Driver signature submitted through the signing link."""
    token: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1, description="Signature image as a data:image/... URL")


class SupportingDocumentDelete(CommandModel):
    """Remove a supporting document by its storage path."""
    path: str = Field(..., min_length=1)


# === Responses ===

class VehicleSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vin: Optional[str] = None
    license_plate: Optional[str] = None
    display_name: str


class InspectionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    inspection_date: Optional[date] = None
    exterior_condition: Optional[str] = None
    interior_condition: Optional[str] = None
    mechanical_condition: Optional[str] = None
    inspector_name: Optional[str] = None
    notes: Optional[str] = None


class DriverContact(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    email_address: Optional[str] = None
    phone_number: Optional[str] = None


class SupportingDocumentResponse(BaseModel):
    """Stored supporting document."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    agreement_id: int
    name: str
    size_bytes: int
    content_type: Optional[str] = None
    url: str
    path: str
    created_on: Optional[datetime] = None


class SupportingDocumentUploadResponse(BaseModel):
    """Result of an upload."""
    id: int
    url: str
    path: str
    file_name: str
    file_size: int
    content_type: Optional[str] = None


class AgreementResponse(BaseModel):
    """Agreement as seen by operators."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: int
    inspection_id: int
    template_id: int
    status: AgreementStatus
    final_content_richtext: Optional[str] = None
    assigned_driver_id: Optional[int] = None
    signed_by_driver_id: Optional[int] = None
    signed_at: Optional[datetime] = None
    signing_token_expires_at: Optional[datetime] = None
    termination_reason: Optional[str] = None
    terminated_at: Optional[datetime] = None
    version: int
    created_by: Optional[int] = None
    created_on: Optional[datetime] = None
    updated_on: Optional[datetime] = None


class AgreementDetailResponse(AgreementResponse):
    """Agreement with its related records."""
    template_title: Optional[str] = None
    vehicle: Optional[VehicleSummary] = None
    inspection: Optional[InspectionSummary] = None
    assigned_driver: Optional[DriverContact] = None
    signed_by_driver: Optional[DriverContact] = None
    has_signature: bool = False
    supporting_documents: List[SupportingDocumentResponse] = []


class AgreementSummaryResponse(BaseModel):
    """Agreement row for listings."""
    id: int
    status: AgreementStatus
    vehicle_id: int
    vehicle_name: str
    license_plate: Optional[str] = None
    template_title: Optional[str] = None
    driver_name: Optional[str] = None
    signed_at: Optional[datetime] = None
    created_on: Optional[datetime] = None


class PaginatedAgreementResponse(BaseModel):
    """Paginated agreements."""
    items: List[AgreementSummaryResponse]
    total_items: int
    page: int
    per_page: int
    total_pages: int


class FinaliseResponse(BaseModel):
    """Agreement after finalise plus the link emailed to the driver."""
    agreement: AgreementResponse
    signing_link: str


class AgreementPreviewResponse(BaseModel):
    """Rendered body for operator preview."""
    agreement_id: int
    status: AgreementStatus
    frozen: bool
    content_html: str


class SigningContextResponse(BaseModel):
    """Everything the driver sees on the signing page."""
    agreement_id: int
    status: AgreementStatus
    template_title: Optional[str] = None
    organisation_name: Optional[str] = None
    content_html: str
    vehicle: VehicleSummary
    driver: Optional[DriverContact] = None
    inspection: Optional[InspectionSummary] = None
    supporting_documents: List[SupportingDocumentResponse] = []
    expires_at: Optional[datetime] = None


class SignatureReceipt(BaseModel):
    """Returned to the driver after signing."""
    agreement_id: int
    status: AgreementStatus
    signed_at: Optional[datetime] = None
