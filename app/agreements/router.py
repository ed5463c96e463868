# app/agreements/router.py

"""
FastAPI routers for the Agreements module.

Operator endpoints require an admin or manager role. The signing endpoints
are public and authorised only by the signing token from the emailed link.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from app.agreements.exceptions import AgreementBaseException, convert_to_http_exception
from app.agreements.models import Agreement
from app.agreements.renderer import (
    DEFAULT_TEMPLATE_BODY, DEFAULT_TEMPLATE_TITLE, InspectionSnapshot, TemplateToken,
)
from app.agreements.schemas import (
    AgreementCreate, AgreementDetailResponse, AgreementFinalise, AgreementPreviewResponse,
    AgreementResponse, AgreementSign, AgreementStatus, AgreementSummaryResponse,
    AgreementTemplateCreate, AgreementTemplateResponse, AgreementTemplateSummary,
    AgreementTerminate, DefaultTemplateResponse, DriverContact, FinaliseResponse,
    InspectionLink, InspectionSummary, PaginatedAgreementResponse, SignatureReceipt,
    SigningContextResponse, SupportingDocumentDelete, SupportingDocumentResponse,
    SupportingDocumentUploadResponse, VehicleSummary,
)
from app.agreements.services import (
    AgreementService, AgreementTemplateService, SigningPortalService,
    SupportingDocumentService,
)
from app.users.models import User
from app.users.utils import require_operator
from app.utils.logger import get_logger

logger = get_logger(__name__)

template_router = APIRouter(prefix="/agreements/templates", tags=["Agreement Templates"])

router = APIRouter(
    prefix="/agreements",
    tags=["Agreements"],
    responses={404: {"description": "Not found"}},
)


def _detail(agreement: Agreement) -> AgreementDetailResponse:
    base = AgreementResponse.model_validate(agreement).model_dump()
    inspection = None
    if agreement.inspection is not None:
        snapshot = InspectionSnapshot.from_inspection(agreement.inspection)
        inspection = InspectionSummary.model_validate(snapshot.model_dump())
    return AgreementDetailResponse(
        **base,
        template_title=agreement.template.title if agreement.template else None,
        vehicle=VehicleSummary.model_validate(agreement.vehicle) if agreement.vehicle else None,
        inspection=inspection,
        assigned_driver=DriverContact.model_validate(agreement.assigned_driver) if agreement.assigned_driver else None,
        signed_by_driver=DriverContact.model_validate(agreement.signed_by_driver) if agreement.signed_by_driver else None,
        has_signature=bool(agreement.driver_signature_data),
        supporting_documents=[
            SupportingDocumentResponse.model_validate(document)
            for document in agreement.supporting_documents
        ],
    )


# === Template Endpoints ===

@template_router.post("", response_model=AgreementTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    data: AgreementTemplateCreate,
    service: AgreementTemplateService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    Create an agreement template
    """
    try:
        return await service.create_template(data, current_user.id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e


@template_router.get("", response_model=List[AgreementTemplateSummary])
async def list_templates(
    active_only: bool = Query(False, description="Only templates usable for new agreements"),
    service: AgreementTemplateService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    List agreement templates, most recently updated first
    """
    if active_only:
        return await service.list_active_templates()
    return await service.list_templates()


@template_router.get("/default", response_model=DefaultTemplateResponse)
async def get_default_template(current_user: User = Depends(require_operator)):
    """
    Stock template body and the tokens it may use
    """
    return DefaultTemplateResponse(
        title=DEFAULT_TEMPLATE_TITLE,
        content_richtext=DEFAULT_TEMPLATE_BODY,
        tokens=[token.value for token in TemplateToken],
    )


@template_router.get("/{template_id}", response_model=AgreementTemplateResponse)
async def get_template(
    template_id: int,
    service: AgreementTemplateService = Depends(),
    current_user: User = Depends(require_operator),
):
    try:
        return await service.get_template(template_id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e


# === Agreement Endpoints ===

@router.post("", response_model=AgreementResponse, status_code=status.HTTP_201_CREATED)
async def create_agreement(
    data: AgreementCreate,
    service: AgreementService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    Create a draft agreement for a vehicle and one of its inspections
    """
    logger.info("Create agreement requested", user_id=current_user.id)
    try:
        return await service.create_agreement(data, current_user.id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e


@router.get("", response_model=PaginatedAgreementResponse)
async def list_agreements(
    status: Optional[AgreementStatus] = Query(None, description="Filter by status"),
    search: Optional[str] = Query(None, description="License plate, make, model or template title"),
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(10, ge=1, le=100, description="Items per page"),
    service: AgreementService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    Paginated agreements, newest first
    """
    agreements, total_items = await service.list_agreements(status, search, page, per_page)

    items = [
        AgreementSummaryResponse(
            id=agreement.id,
            status=agreement.status,
            vehicle_id=agreement.vehicle_id,
            vehicle_name=agreement.vehicle.display_name,
            license_plate=agreement.vehicle.license_plate,
            template_title=agreement.template.title if agreement.template else None,
            driver_name=(
                (agreement.signed_by_driver or agreement.assigned_driver).full_name
                if (agreement.signed_by_driver or agreement.assigned_driver) else None
            ),
            signed_at=agreement.signed_at,
            created_on=agreement.created_on,
        )
        for agreement in agreements
    ]

    total_pages = (total_items + per_page - 1) // per_page

    return PaginatedAgreementResponse(
        items=items,
        total_items=total_items,
        page=page,
        per_page=per_page,
        total_pages=total_pages,
    )


@router.get("/{agreement_id}", response_model=AgreementDetailResponse)
async def get_agreement(
    agreement_id: int,
    service: AgreementService = Depends(),
    current_user: User = Depends(require_operator),
):
    try:
        return _detail(await service.get_agreement(agreement_id))
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e


@router.get("/{agreement_id}/preview", response_model=AgreementPreviewResponse)
async def preview_agreement(
    agreement_id: int,
    service: AgreementService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    Rendered agreement body as the driver will see it
    """
    try:
        agreement, content_html, frozen = await service.preview(agreement_id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e
    return AgreementPreviewResponse(
        agreement_id=agreement.id,
        status=agreement.status,
        frozen=frozen,
        content_html=content_html,
    )


@router.patch("/{agreement_id}/inspection", response_model=AgreementResponse)
async def link_inspection(
    agreement_id: int,
    data: InspectionLink,
    service: AgreementService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    Re-link an unsigned agreement to another inspection of the same vehicle
    """
    try:
        return await service.link_inspection(agreement_id, data, current_user.id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e


@router.post("/{agreement_id}/finalise", response_model=FinaliseResponse)
async def finalise_agreement(
    agreement_id: int,
    data: AgreementFinalise,
    service: AgreementService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    Freeze the agreement content and email the driver a signing link
    """
    try:
        agreement, signing_link = await service.finalize(agreement_id, data, current_user)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e
    return FinaliseResponse(
        agreement=AgreementResponse.model_validate(agreement),
        signing_link=signing_link,
    )


@router.post("/{agreement_id}/terminate", response_model=AgreementResponse)
async def terminate_agreement(
    agreement_id: int,
    data: Optional[AgreementTerminate] = None,
    service: AgreementService = Depends(),
    current_user: User = Depends(require_operator),
):
    try:
        return await service.terminate(agreement_id, data or AgreementTerminate(), current_user)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e


@router.delete("/{agreement_id}")
async def delete_agreement(
    agreement_id: int,
    service: AgreementService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    Delete an agreement and its supporting documents
    """
    try:
        await service.delete_agreement(agreement_id, current_user.id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e
    return {"success": True, "agreement_id": agreement_id}


# === Supporting Document Endpoints ===

@router.get("/{agreement_id}/supporting", response_model=List[SupportingDocumentResponse])
async def list_supporting_documents(
    agreement_id: int,
    service: SupportingDocumentService = Depends(),
    current_user: User = Depends(require_operator),
):
    try:
        return await service.list_documents(agreement_id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e


@router.post("/{agreement_id}/supporting", response_model=SupportingDocumentUploadResponse)
async def upload_supporting_document(
    agreement_id: int,
    file: UploadFile = File(...),
    service: SupportingDocumentService = Depends(),
    current_user: User = Depends(require_operator),
):
    """
    Attach a supporting document (image, PDF, Word or Excel, up to 20 MB)
    """
    try:
        # Reject on the declared size before buffering the body
        if file.size is not None:
            service.ensure_within_limit(file.size)
        data = await file.read()
        document = await service.attach(
            agreement_id, file.filename or "document", file.content_type, data, current_user.id
        )
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e
    return SupportingDocumentUploadResponse(
        id=document.id,
        url=document.url,
        path=document.path,
        file_name=document.name,
        file_size=document.size_bytes,
        content_type=document.content_type,
    )


@router.delete("/{agreement_id}/supporting")
async def delete_supporting_document(
    agreement_id: int,
    data: SupportingDocumentDelete,
    service: SupportingDocumentService = Depends(),
    current_user: User = Depends(require_operator),
):
    try:
        await service.detach(agreement_id, path=data.path, actor_id=current_user.id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e
    return {"success": True}


@router.delete("/{agreement_id}/supporting/{document_id}")
async def delete_supporting_document_by_id(
    agreement_id: int,
    document_id: int,
    service: SupportingDocumentService = Depends(),
    current_user: User = Depends(require_operator),
):
    try:
        await service.detach(agreement_id, document_id=document_id, actor_id=current_user.id)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e
    return {"success": True}


# === Driver Signing Endpoints (public) ===

@router.get("/{agreement_id}/signing", response_model=SigningContextResponse)
async def get_signing_context(
    agreement_id: int,
    token: str = Query(..., min_length=1),
    portal: SigningPortalService = Depends(),
):
    """
    Agreement content and details for the driver holding the signing link
    """
    try:
        return await portal.load_signing_context(agreement_id, token)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e


@router.post("/{agreement_id}/sign", response_model=SignatureReceipt)
async def sign_agreement(
    agreement_id: int,
    data: AgreementSign,
    portal: SigningPortalService = Depends(),
):
    """
    Submit the driver's signature
    """
    try:
        agreement = await portal.submit_signature(agreement_id, data.token, data.signature)
    except AgreementBaseException as e:
        raise convert_to_http_exception(e) from e
    return SignatureReceipt(
        agreement_id=agreement.id,
        status=agreement.status,
        signed_at=agreement.signed_at,
    )
