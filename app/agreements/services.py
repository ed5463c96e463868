# app/agreements/services.py

"""
Business logic layer for agreements.

Covers the template store, the agreement state machine, supporting
documents and the driver signing session. Every state change is a
conditional UPDATE committed together with its audit entry; emails and
storage deletes happen only after the commit.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

from fastapi import Depends
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit_trail.schemas import AuditAction, AuditEntityType
from app.audit_trail.services import AuditTrailService
from app.core.config import settings
from app.core.db import get_async_db
from app.agreements.exceptions import (
    AgreementBaseException, DeliveryError, DocumentStorageError, ImmutableStateError,
    IntegrityError, InvalidTokenError, NotFoundError, StateConflictError, ValidationError,
)
from app.agreements.models import Agreement, AgreementSupportingDocument, AgreementTemplate
from app.agreements.notifications import AgreementNotifier, build_signing_link
from app.agreements.renderer import (
    InspectionSnapshot, RenderingContext, VehicleSnapshot, find_unknown_tokens, render,
)
from app.agreements.repository import AgreementRepository
from app.agreements.schemas import (
    AgreementCreate, AgreementFinalise, AgreementStatus, AgreementTemplateCreate,
    AgreementTerminate, DriverContact, InspectionLink, InspectionSummary,
    SigningContextResponse, SupportingDocumentResponse, VehicleSummary,
)
from app.agreements.utils import (
    AgreementConfig, build_document_path, generate_signing_token, is_allowed_document_type,
    is_deliverable_address, is_document_path_for, utcnow, validate_signature_image,
)
from app.users.models import User
from app.utils.email_service import EmailService, get_email_service
from app.utils.logger import get_logger
from app.utils.s3_utils import S3Utils, get_s3_utils

logger = get_logger(__name__)

UNSIGNED_STATUSES = (AgreementStatus.DRAFT, AgreementStatus.PENDING_SIGNATURE)
CLOSED_STATUSES = (AgreementStatus.SIGNED.value, AgreementStatus.TERMINATED.value)


# === Dependencies ===

def get_agreement_repository(db: AsyncSession = Depends(get_async_db)) -> AgreementRepository:
    """Dependency to get AgreementRepository instance."""
    return AgreementRepository(db)


def get_agreement_config() -> AgreementConfig:
    return AgreementConfig.from_settings(settings)


def get_mailer() -> EmailService:
    return get_email_service()


def get_document_storage() -> S3Utils:
    return get_s3_utils()


@asynccontextmanager
async def unit_of_work(repo: AgreementRepository, operation: str, **context):
    """
    Commit on success. Roll back on any error, translating database errors
    into the agreement exception hierarchy.
    """
    try:
        yield
        await repo.commit()
    except AgreementBaseException:
        await repo.rollback()
        raise
    except SQLAlchemyIntegrityError as e:
        await repo.rollback()
        logger.error("Integrity error", operation=operation, error=str(e), **context)
        raise IntegrityError(f"Could not {operation}: conflicting data", context) from e
    except SQLAlchemyError as e:
        await repo.rollback()
        logger.error("Database error", operation=operation, error=str(e), exc_info=True, **context)
        raise AgreementBaseException(f"Database error during {operation}", context) from e


def _requester_name(actor: Optional[User]) -> str:
    return actor.name if actor is not None else "Fleet team"


# === Template Store ===

class AgreementTemplateService:
    """Create and look up agreement templates."""

    def __init__(self, repo: AgreementRepository = Depends(get_agreement_repository)):
        self.repo = repo
        self.audit = AuditTrailService(repo.db)

    async def create_template(self, data: AgreementTemplateCreate, actor_id: Optional[int]) -> AgreementTemplate:
        title = data.title.strip()
        if not title or not data.content_richtext.strip():
            raise ValidationError("Title and content are required")

        unknown = find_unknown_tokens(data.content_richtext)
        if unknown:
            logger.warning("Template references unsupported tokens", title=title, tokens=unknown)

        async with unit_of_work(self.repo, "create template"):
            template = await self.repo.create_template(title, data.content_richtext, data.active, actor_id)
            await self.audit.record(
                AuditEntityType.AGREEMENT_TEMPLATE,
                template.id,
                AuditAction.CREATE,
                actor_id,
                {"title": title, "active": data.active},
            )

        logger.info("Agreement template created", template_id=template.id, title=title)
        return template

    async def get_template(self, template_id: int) -> AgreementTemplate:
        template = await self.repo.get_template(template_id)
        if template is None:
            raise NotFoundError("Agreement template", template_id)
        return template

    async def list_templates(self) -> List[AgreementTemplate]:
        return await self.repo.list_templates()

    async def list_active_templates(self) -> List[AgreementTemplate]:
        """Templates a new agreement may be created from."""
        return await self.repo.list_templates(active_only=True)


# === Agreement Aggregate ===

class AgreementService:
    """
    Agreement state machine.

        draft -> pending_signature          finalize
        pending_signature -> pending_signature   finalize again, new token
        pending_signature -> signed          sign
        pending_signature | signed -> terminated
    """

    def __init__(
        self,
        repo: AgreementRepository = Depends(get_agreement_repository),
        mailer: EmailService = Depends(get_mailer),
        storage: S3Utils = Depends(get_document_storage),
        config: AgreementConfig = Depends(get_agreement_config),
    ):
        self.repo = repo
        self.mailer = mailer
        self.storage = storage
        self.config = config
        self.audit = AuditTrailService(repo.db)
        logger.debug("AgreementService initialized.")

    # === Lookups ===

    async def get_agreement(self, agreement_id: int, refresh: bool = False) -> Agreement:
        agreement = await self.repo.get_agreement(agreement_id, refresh=refresh)
        if agreement is None:
            raise NotFoundError("Agreement", agreement_id)
        return agreement

    async def list_agreements(
        self, status: Optional[AgreementStatus], search: Optional[str], page: int, per_page: int
    ) -> Tuple[List[Agreement], int]:
        return await self.repo.list_agreements(status.value if status else None, search, page, per_page)

    async def organisation_name(self) -> Optional[str]:
        return await self.repo.get_organisation_name() or self.config.organisation_name

    async def build_context(self, agreement: Agreement) -> RenderingContext:
        return RenderingContext(
            organisation_name=await self.organisation_name(),
            vehicle=VehicleSnapshot.model_validate(agreement.vehicle),
            inspection=InspectionSnapshot.from_inspection(agreement.inspection) if agreement.inspection else None,
        )

    async def preview(self, agreement_id: int) -> Tuple[Agreement, str, bool]:
        """Rendered body: the frozen content once finalised, the template before that."""
        agreement = await self.get_agreement(agreement_id)
        if agreement.final_content_richtext:
            return agreement, agreement.final_content_richtext, True
        context = await self.build_context(agreement)
        return agreement, render(agreement.template.content_richtext, context), False

    # === Lifecycle ===

    async def create_agreement(self, data: AgreementCreate, actor_id: Optional[int]) -> Agreement:
        """Create a draft from a vehicle, one of its inspections and an active template."""
        logger.info(
            "Creating agreement",
            vehicle_id=data.vehicle_id,
            inspection_id=data.inspection_id,
            template_id=data.template_id,
        )

        async with unit_of_work(self.repo, "create agreement", vehicle_id=data.vehicle_id):
            vehicle = await self.repo.get_vehicle(data.vehicle_id)
            if vehicle is None:
                raise NotFoundError("Vehicle", data.vehicle_id)
            inspection = await self.repo.get_inspection(data.inspection_id)
            if inspection is None:
                raise NotFoundError("Inspection", data.inspection_id)
            template = await self.repo.get_template(data.template_id)
            if template is None:
                raise NotFoundError("Agreement template", data.template_id)

            if not template.active:
                raise ValidationError("Agreement template is not active", {"template_id": template.id})
            if not (template.content_richtext or "").strip():
                raise ValidationError("Agreement template has no content", {"template_id": template.id})
            if inspection.vehicle_id != vehicle.id:
                raise IntegrityError(
                    "Inspection does not match selected vehicle",
                    {"vehicle_id": vehicle.id, "inspection_id": inspection.id},
                )

            agreement = await self.repo.create_agreement(vehicle.id, inspection.id, template.id, actor_id)
            await self.audit.record(
                AuditEntityType.AGREEMENT,
                agreement.id,
                AuditAction.CREATE,
                actor_id,
                {"vehicle_id": vehicle.id, "inspection_id": inspection.id, "template_id": template.id},
            )

        return await self.get_agreement(agreement.id, refresh=True)

    async def finalize(
        self, agreement_id: int, data: AgreementFinalise, actor: Optional[User] = None
    ) -> Tuple[Agreement, str]:
        """
        Freeze the content, issue a fresh signing token and email the driver.

        The state change is committed before the email goes out. If sending
        fails a DeliveryError is raised and the agreement stays pending.
        """
        actor_id = actor.id if actor else None
        logger.info("Finalising agreement", agreement_id=agreement_id, driver_id=data.driver_id)

        async with unit_of_work(self.repo, "finalise agreement", agreement_id=agreement_id):
            agreement = await self.get_agreement(agreement_id)
            previous_status = agreement.status
            if previous_status not in [s.value for s in UNSIGNED_STATUSES]:
                raise StateConflictError(agreement_id, previous_status, "finalise")

            driver = await self.repo.get_driver(data.driver_id)
            if driver is None:
                raise NotFoundError("Driver", data.driver_id)
            if not is_deliverable_address(driver.email_address):
                raise ValidationError(
                    "Driver must have a valid email address to receive the agreement",
                    {"driver_id": driver.id},
                )

            # Overrides may carry tokens too; both are resolved once, here
            body = data.content if data.content and data.content.strip() else agreement.template.content_richtext
            content = render(body, await self.build_context(agreement))

            now = utcnow()
            token = generate_signing_token()
            updated = await self.repo.transition(
                agreement_id,
                UNSIGNED_STATUSES,
                agreement.version,
                status=AgreementStatus.PENDING_SIGNATURE.value,
                final_content_richtext=content,
                assigned_driver_id=driver.id,
                signing_token=token,
                signing_token_expires_at=self.config.token_expiry(now),
                modified_by=actor_id,
            )
            if not updated:
                raise StateConflictError(agreement_id, previous_status, "finalise")

            await self.audit.record(
                AuditEntityType.AGREEMENT,
                agreement_id,
                AuditAction.FINALIZE,
                actor_id,
                {
                    "driver_id": driver.id,
                    "previous_status": previous_status,
                    "content_overridden": bool(data.content and data.content.strip()),
                },
            )

        agreement = await self.get_agreement(agreement_id, refresh=True)
        signing_link = build_signing_link(self.config.app_base_url, agreement.id, token)
        logger.info("Agreement sent for signature", agreement_id=agreement_id, driver_id=driver.id)

        notifier = AgreementNotifier(self.mailer, await self.organisation_name())
        try:
            await notifier.send_invite(
                to=driver.email_address,
                driver_name=driver.full_name,
                requester_name=_requester_name(actor),
                vehicle_name=agreement.vehicle.display_name,
                license_plate=agreement.vehicle.license_plate,
                template_title=agreement.template.title,
                signing_link=signing_link,
                expires_at=agreement.signing_token_expires_at,
            )
        except Exception as e:
            logger.error("Agreement invite email failed", agreement_id=agreement_id, error=str(e))
            raise DeliveryError(
                "Agreement updated but email failed to send", agreement.id, agreement.status
            ) from e

        return agreement, signing_link

    async def link_inspection(
        self, agreement_id: int, data: InspectionLink, actor_id: Optional[int]
    ) -> Agreement:
        """Point an unsigned agreement at another inspection of the same vehicle."""
        async with unit_of_work(self.repo, "link inspection", agreement_id=agreement_id):
            agreement = await self.get_agreement(agreement_id)
            if agreement.status not in [s.value for s in UNSIGNED_STATUSES]:
                raise StateConflictError(agreement_id, agreement.status, "change the inspection of")
            if agreement.inspection_id == data.inspection_id:
                raise ValidationError(
                    "Agreement already linked to this inspection",
                    {"inspection_id": data.inspection_id},
                )

            inspection = await self.repo.get_inspection(data.inspection_id)
            if inspection is None:
                raise NotFoundError("Inspection", data.inspection_id)
            if inspection.vehicle_id != agreement.vehicle_id:
                raise IntegrityError(
                    "Inspection does not belong to the same vehicle",
                    {"vehicle_id": agreement.vehicle_id, "inspection_id": inspection.id},
                )

            previous_inspection_id = agreement.inspection_id
            updated = await self.repo.transition(
                agreement_id,
                UNSIGNED_STATUSES,
                agreement.version,
                inspection_id=inspection.id,
                modified_by=actor_id,
            )
            if not updated:
                raise StateConflictError(agreement_id, agreement.status, "change the inspection of")

            await self.audit.record(
                AuditEntityType.AGREEMENT,
                agreement_id,
                AuditAction.LINK_INSPECTION,
                actor_id,
                {
                    "previous_inspection_id": previous_inspection_id,
                    "inspection_id": inspection.id,
                    "reason": data.reason,
                },
            )

        logger.info("Agreement inspection updated", agreement_id=agreement_id, inspection_id=data.inspection_id)
        return await self.get_agreement(agreement_id, refresh=True)

    async def sign(self, agreement_id: int, token: str, signature_image: str, driver_id: int) -> Agreement:
        """
        Record the driver's signature. Succeeds at most once per token; any
        mismatch, reuse or expiry raises InvalidTokenError. A draft or
        terminated agreement raises StateConflictError instead.
        """
        signature = validate_signature_image(signature_image)

        async with unit_of_work(self.repo, "sign agreement", agreement_id=agreement_id):
            updated = await self.repo.consume_signing_token(
                agreement_id, token, driver_id, signature, utcnow()
            )
            if not updated:
                current = await self.repo.get_agreement(agreement_id, refresh=True)
                if current is not None and current.status in (
                    AgreementStatus.DRAFT.value, AgreementStatus.TERMINATED.value
                ):
                    raise StateConflictError(agreement_id, current.status, "sign")
                logger.warning("Rejected signing token", agreement_id=agreement_id)
                raise InvalidTokenError()

            await self.audit.record(
                AuditEntityType.AGREEMENT,
                agreement_id,
                AuditAction.SIGN,
                None,
                {"driver_id": driver_id},
            )

        logger.info("Agreement signed", agreement_id=agreement_id, driver_id=driver_id)
        return await self.get_agreement(agreement_id, refresh=True)

    async def terminate(
        self, agreement_id: int, data: AgreementTerminate, actor: Optional[User] = None
    ) -> Agreement:
        """
        Terminate a pending or signed agreement. Terminating an already
        terminated agreement is a no-op.
        """
        actor_id = actor.id if actor else None

        async with unit_of_work(self.repo, "terminate agreement", agreement_id=agreement_id):
            agreement = await self.get_agreement(agreement_id)
            previous_status = agreement.status
            if previous_status == AgreementStatus.TERMINATED.value:
                logger.info("Agreement already terminated", agreement_id=agreement_id)
                return agreement
            if previous_status == AgreementStatus.DRAFT.value:
                raise StateConflictError(agreement_id, previous_status, "terminate")

            updated = await self.repo.transition(
                agreement_id,
                (AgreementStatus.PENDING_SIGNATURE, AgreementStatus.SIGNED),
                agreement.version,
                status=AgreementStatus.TERMINATED.value,
                signing_token=None,
                signing_token_expires_at=None,
                termination_reason=data.reason,
                terminated_at=utcnow(),
                modified_by=actor_id,
            )
            if not updated:
                current = await self.get_agreement(agreement_id, refresh=True)
                if current.status == AgreementStatus.TERMINATED.value:
                    logger.info("Agreement terminated concurrently", agreement_id=agreement_id)
                    return current
                raise StateConflictError(agreement_id, current.status, "terminate")

            await self.audit.record(
                AuditEntityType.AGREEMENT,
                agreement_id,
                AuditAction.TERMINATE,
                actor_id,
                {"previous_status": previous_status, "reason": data.reason},
            )

        agreement = await self.get_agreement(agreement_id, refresh=True)
        logger.info("Agreement terminated", agreement_id=agreement_id, previous_status=previous_status)

        driver = agreement.signed_by_driver or agreement.assigned_driver
        if data.notify_driver and driver is not None and driver.email_address:
            notifier = AgreementNotifier(self.mailer, await self.organisation_name())
            try:
                await notifier.send_termination(
                    to=driver.email_address,
                    driver_name=driver.full_name,
                    requester_name=_requester_name(actor),
                    vehicle_name=agreement.vehicle.display_name,
                    license_plate=agreement.vehicle.license_plate,
                    template_title=agreement.template.title,
                    reason=data.reason,
                )
            except Exception as e:
                logger.error("Termination email failed", agreement_id=agreement_id, error=str(e))
                raise DeliveryError(
                    "Agreement terminated but email failed to send", agreement.id, agreement.status
                ) from e

        return agreement

    async def delete_agreement(self, agreement_id: int, actor_id: Optional[int]) -> None:
        """Delete an agreement in any status along with its supporting documents."""
        async with unit_of_work(self.repo, "delete agreement", agreement_id=agreement_id):
            agreement = await self.get_agreement(agreement_id)
            paths = [document.path for document in agreement.supporting_documents]
            status = agreement.status
            await self.repo.delete_agreement(agreement_id)
            await self.audit.record(
                AuditEntityType.AGREEMENT,
                agreement_id,
                AuditAction.DELETE,
                actor_id,
                {"status": status, "supporting_documents": len(paths)},
            )

        logger.info("Agreement deleted", agreement_id=agreement_id, documents=len(paths))
        for path in paths:
            await remove_stored_file(self.storage, path)


async def remove_stored_file(storage: S3Utils, path: str) -> None:
    """Best-effort delete of a stored object; failures are logged only."""
    try:
        deleted = await asyncio.to_thread(storage.delete_file, path)
    except Exception as e:
        logger.warning("Failed to delete stored file", path=path, error=str(e))
        return
    if not deleted:
        logger.warning("Failed to delete stored file", path=path)


# === Supporting Document Manager ===

class SupportingDocumentService:
    """Attach and detach files while an agreement is still unsigned."""

    def __init__(
        self,
        repo: AgreementRepository = Depends(get_agreement_repository),
        storage: S3Utils = Depends(get_document_storage),
        config: AgreementConfig = Depends(get_agreement_config),
    ):
        self.repo = repo
        self.storage = storage
        self.config = config
        self.audit = AuditTrailService(repo.db)

    async def _get_mutable_agreement(self, agreement_id: int) -> Agreement:
        agreement = await self.repo.get_agreement(agreement_id)
        if agreement is None:
            raise NotFoundError("Agreement", agreement_id)
        if agreement.status in CLOSED_STATUSES:
            raise ImmutableStateError(agreement_id, agreement.status)
        return agreement

    async def _lock(self, agreement_id: int) -> None:
        # Status may have moved on since the read
        if not await self.repo.lock_documents_if_mutable(agreement_id):
            agreement = await self.repo.get_agreement(agreement_id, refresh=True)
            if agreement is None:
                raise NotFoundError("Agreement", agreement_id)
            raise ImmutableStateError(agreement_id, agreement.status)

    def ensure_within_limit(self, size_bytes: int) -> None:
        max_bytes = self.config.supporting_document_max_bytes
        if size_bytes > max_bytes:
            raise ValidationError("File too large", {"size_bytes": size_bytes, "max_bytes": max_bytes})

    async def list_documents(self, agreement_id: int) -> List[AgreementSupportingDocument]:
        if await self.repo.get_agreement(agreement_id) is None:
            raise NotFoundError("Agreement", agreement_id)
        return await self.repo.list_documents(agreement_id)

    async def attach(
        self,
        agreement_id: int,
        file_name: str,
        content_type: Optional[str],
        data: bytes,
        actor_id: Optional[int],
    ) -> AgreementSupportingDocument:
        """Validate and upload a file, then record it against the agreement."""
        await self._get_mutable_agreement(agreement_id)

        if not data:
            raise ValidationError("Uploaded file is empty")
        if not is_allowed_document_type(content_type):
            raise ValidationError(
                "Only images, PDF, Word or Excel documents are allowed",
                {"content_type": content_type},
            )
        self.ensure_within_limit(len(data))

        path = build_document_path(agreement_id, file_name, utcnow())
        url = await asyncio.to_thread(self.storage.upload_bytes, data, path, content_type)
        if not url:
            raise DocumentStorageError("Failed to upload supporting document", {"agreement_id": agreement_id})

        try:
            async with unit_of_work(self.repo, "attach document", agreement_id=agreement_id):
                await self._lock(agreement_id)
                document = await self.repo.add_document(
                    agreement_id, file_name, len(data), content_type, url, path, actor_id
                )
                await self.audit.record(
                    AuditEntityType.AGREEMENT,
                    agreement_id,
                    AuditAction.ATTACH_DOCUMENT,
                    actor_id,
                    {"document_id": document.id, "path": path, "size_bytes": len(data)},
                )
        except AgreementBaseException:
            await remove_stored_file(self.storage, path)
            raise

        logger.info("Supporting document attached", agreement_id=agreement_id, path=path)
        return document

    async def detach(
        self,
        agreement_id: int,
        document_id: Optional[int] = None,
        path: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> None:
        """
        Remove a document by id or by storage path. The row is deleted and
        committed first; the stored object is removed best-effort afterwards.
        """
        if path is not None and not is_document_path_for(agreement_id, path):
            raise ValidationError("Invalid document path", {"path": path})

        await self._get_mutable_agreement(agreement_id)
        document = await self.repo.get_document(agreement_id, document_id=document_id, path=path)
        if document is None:
            raise NotFoundError("Supporting document", document_id)

        stored_path = document.path
        async with unit_of_work(self.repo, "detach document", agreement_id=agreement_id):
            await self._lock(agreement_id)
            await self.repo.delete_document(document.id)
            await self.audit.record(
                AuditEntityType.AGREEMENT,
                agreement_id,
                AuditAction.DETACH_DOCUMENT,
                actor_id,
                {"document_id": document.id, "path": stored_path},
            )

        logger.info("Supporting document removed", agreement_id=agreement_id, path=stored_path)
        await remove_stored_file(self.storage, stored_path)


# === Signing Portal Session ===

class SigningPortalService:
    """Token-authorised view of one agreement for the driver."""

    def __init__(self, agreements: AgreementService = Depends()):
        self.agreements = agreements
        self.repo = agreements.repo

    async def _authorise(self, agreement_id: int, token: str) -> Agreement:
        agreement = await self.repo.get_pending_by_token(agreement_id, token, utcnow())
        if agreement is None:
            logger.warning("Rejected signing token", agreement_id=agreement_id)
            raise InvalidTokenError()
        return agreement

    async def load_signing_context(self, agreement_id: int, token: str) -> SigningContextResponse:
        """Everything the driver needs to review the agreement before signing."""
        agreement = await self._authorise(agreement_id, token)
        context = await self.agreements.build_context(agreement)

        return SigningContextResponse(
            agreement_id=agreement.id,
            status=agreement.status,
            template_title=agreement.template.title if agreement.template else None,
            organisation_name=context.organisation_name,
            content_html=agreement.final_content_richtext or "",
            vehicle=VehicleSummary.model_validate(agreement.vehicle),
            driver=DriverContact.model_validate(agreement.assigned_driver) if agreement.assigned_driver else None,
            inspection=InspectionSummary.model_validate(context.inspection.model_dump()) if context.inspection else None,
            supporting_documents=[
                SupportingDocumentResponse.model_validate(document)
                for document in agreement.supporting_documents
            ],
            expires_at=agreement.signing_token_expires_at,
        )

    async def submit_signature(self, agreement_id: int, token: str, signature_image: str) -> Agreement:
        agreement = await self._authorise(agreement_id, token)
        return await self.agreements.sign(
            agreement_id, token, signature_image, agreement.assigned_driver_id
        )
