# app/agreements/repository.py

"""
Data Access Layer for the Agreements module using SQLAlchemy 2.x
"""

from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import select, func, and_, or_, desc, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.agreements.models import Agreement, AgreementTemplate, AgreementSupportingDocument
from app.agreements.schemas import AgreementStatus
from app.drivers.models import Driver
from app.organisations.models import Organisation
from app.vehicles.models import Vehicle, VehicleInspection
from app.utils.logger import get_logger

logger = get_logger(__name__)


class AgreementRepository:
    """
    Data Access Layer for agreements, templates and supporting documents.

    Status changes go through conditional UPDATE statements and report the
    number of affected rows; a zero means another writer got there first.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        logger.debug("AgreementRepository initialized", session_id=id(db))

    # === Transaction control ===

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # === Templates ===

    async def create_template(
        self, title: str, content_richtext: str, active: bool, author_id: Optional[int]
    ) -> AgreementTemplate:
        """Insert a template row."""
        template = AgreementTemplate(
            title=title,
            content_richtext=content_richtext,
            active=active,
            created_by=author_id,
            modified_by=author_id,
        )
        self.db.add(template)
        await self.db.flush()
        await self.db.refresh(template)
        return template

    async def get_template(self, template_id: int) -> Optional[AgreementTemplate]:
        result = await self.db.execute(
            select(AgreementTemplate).where(AgreementTemplate.id == template_id)
        )
        return result.scalar_one_or_none()

    async def list_templates(self, active_only: bool = False) -> List[AgreementTemplate]:
        """Templates, most recently updated first."""
        query = select(AgreementTemplate)
        if active_only:
            query = query.where(AgreementTemplate.active.is_(True))
        query = query.order_by(desc(AgreementTemplate.updated_on), desc(AgreementTemplate.id))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # === Read-only snapshots ===

    async def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        result = await self.db.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
        return result.scalar_one_or_none()

    async def get_inspection(self, inspection_id: int) -> Optional[VehicleInspection]:
        result = await self.db.execute(
            select(VehicleInspection).where(VehicleInspection.id == inspection_id)
        )
        return result.scalar_one_or_none()

    async def get_driver(self, driver_id: int) -> Optional[Driver]:
        result = await self.db.execute(select(Driver).where(Driver.id == driver_id))
        return result.scalar_one_or_none()

    async def get_organisation_name(self) -> Optional[str]:
        """Name of the first registered organisation, if any."""
        result = await self.db.execute(
            select(Organisation.name).order_by(Organisation.id).limit(1)
        )
        return result.scalar_one_or_none()

    # === Agreements ===

    async def create_agreement(
        self, vehicle_id: int, inspection_id: int, template_id: int, actor_id: Optional[int]
    ) -> Agreement:
        """Insert a draft agreement."""
        agreement = Agreement(
            vehicle_id=vehicle_id,
            inspection_id=inspection_id,
            template_id=template_id,
            status=AgreementStatus.DRAFT.value,
            version=1,
            created_by=actor_id,
            modified_by=actor_id,
        )
        self.db.add(agreement)
        await self.db.flush()
        logger.info("Agreement created", agreement_id=agreement.id)
        return agreement

    async def get_agreement(self, agreement_id: int, refresh: bool = False) -> Optional[Agreement]:
        """
        Fetch an agreement with its relationships.

        `refresh` overwrites any copy already held by the session, which is
        needed after a bulk UPDATE.
        """
        stmt = select(Agreement).where(Agreement.id == agreement_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending_by_token(
        self, agreement_id: int, token: str, now: datetime
    ) -> Optional[Agreement]:
        """The agreement only if it awaits signature under this unexpired token."""
        stmt = (
            select(Agreement)
            .where(
                Agreement.id == agreement_id,
                Agreement.status == AgreementStatus.PENDING_SIGNATURE.value,
                Agreement.signing_token.is_not(None),
                Agreement.signing_token == token,
                or_(
                    Agreement.signing_token_expires_at.is_(None),
                    Agreement.signing_token_expires_at > now,
                ),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_agreements(
        self,
        status: Optional[str],
        search: Optional[str],
        page: int,
        per_page: int,
    ) -> Tuple[List[Agreement], int]:
        """Agreements newest first, filtered by status and a free-text search."""
        query = (
            select(Agreement)
            .join(Vehicle, Agreement.vehicle_id == Vehicle.id)
            .join(AgreementTemplate, Agreement.template_id == AgreementTemplate.id)
        )

        # === Apply filters ===
        conditions = []
        if status:
            conditions.append(Agreement.status == status)
        if search and search.strip():
            term = f"%{search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(Vehicle.license_plate).like(term),
                    func.lower(Vehicle.make).like(term),
                    func.lower(Vehicle.model).like(term),
                    func.lower(AgreementTemplate.title).like(term),
                )
            )
        if conditions:
            query = query.where(and_(*conditions))

        # === Count total items ===
        count_query = select(func.count()).select_from(query.subquery())
        total_items = (await self.db.execute(count_query)).scalar() or 0

        # === Apply pagination ===
        query = (
            query.order_by(desc(Agreement.created_on), desc(Agreement.id))
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total_items

    async def transition(
        self,
        agreement_id: int,
        from_statuses: Iterable[AgreementStatus],
        expected_version: int,
        **values: Any,
    ) -> int:
        """
        Apply `values` only if the agreement is still in one of `from_statuses`
        at `expected_version`. Returns the number of rows changed.
        """
        allowed = [AgreementStatus(s).value for s in from_statuses]
        stmt = (
            update(Agreement)
            .where(
                Agreement.id == agreement_id,
                Agreement.status.in_(allowed),
                Agreement.version == expected_version,
            )
            .values(version=Agreement.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        logger.debug(
            "Conditional agreement update",
            agreement_id=agreement_id,
            from_statuses=allowed,
            expected_version=expected_version,
            rowcount=result.rowcount,
        )
        return result.rowcount

    async def consume_signing_token(
        self,
        agreement_id: int,
        token: str,
        driver_id: int,
        signature_data: str,
        now: datetime,
    ) -> int:
        """
        Mark the agreement signed if `token` is its live signing token.
        The token is cleared in the same statement so it can be used once.
        """
        stmt = (
            update(Agreement)
            .where(
                Agreement.id == agreement_id,
                Agreement.status == AgreementStatus.PENDING_SIGNATURE.value,
                Agreement.signing_token == token,
                Agreement.assigned_driver_id == driver_id,
                or_(
                    Agreement.signing_token_expires_at.is_(None),
                    Agreement.signing_token_expires_at > now,
                ),
            )
            .values(
                status=AgreementStatus.SIGNED.value,
                signed_by_driver_id=driver_id,
                signed_at=now,
                driver_signature_data=signature_data,
                signing_token=None,
                signing_token_expires_at=None,
                version=Agreement.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def lock_documents_if_mutable(self, agreement_id: int) -> int:
        """
        Touch the agreement row if its documents may still change.
        Returns 0 when it has been signed or terminated meanwhile.
        """
        stmt = (
            update(Agreement)
            .where(
                Agreement.id == agreement_id,
                Agreement.status.in_(
                    [AgreementStatus.DRAFT.value, AgreementStatus.PENDING_SIGNATURE.value]
                ),
            )
            .values(updated_on=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def delete_agreement(self, agreement_id: int) -> None:
        """Delete an agreement and its supporting document rows."""
        await self.db.execute(
            delete(AgreementSupportingDocument)
            .where(AgreementSupportingDocument.agreement_id == agreement_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(Agreement)
            .where(Agreement.id == agreement_id)
            .execution_options(synchronize_session=False)
        )

    # === Supporting documents ===

    async def add_document(
        self,
        agreement_id: int,
        name: str,
        size_bytes: int,
        content_type: Optional[str],
        url: str,
        path: str,
        actor_id: Optional[int],
    ) -> AgreementSupportingDocument:
        document = AgreementSupportingDocument(
            agreement_id=agreement_id,
            name=name,
            size_bytes=size_bytes,
            content_type=content_type,
            url=url,
            path=path,
            created_by=actor_id,
        )
        self.db.add(document)
        await self.db.flush()
        await self.db.refresh(document)
        return document

    async def list_documents(self, agreement_id: int) -> List[AgreementSupportingDocument]:
        result = await self.db.execute(
            select(AgreementSupportingDocument)
            .where(AgreementSupportingDocument.agreement_id == agreement_id)
            .order_by(AgreementSupportingDocument.id)
        )
        return list(result.scalars().all())

    async def get_document(
        self, agreement_id: int, document_id: Optional[int] = None, path: Optional[str] = None
    ) -> Optional[AgreementSupportingDocument]:
        """Look a document up by id or by storage path within one agreement."""
        stmt = select(AgreementSupportingDocument).where(
            AgreementSupportingDocument.agreement_id == agreement_id
        )
        if document_id is not None:
            stmt = stmt.where(AgreementSupportingDocument.id == document_id)
        if path is not None:
            stmt = stmt.where(AgreementSupportingDocument.path == path)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def delete_document(self, document_id: int) -> None:
        await self.db.execute(
            delete(AgreementSupportingDocument)
            .where(AgreementSupportingDocument.id == document_id)
            .execution_options(synchronize_session=False)
        )
