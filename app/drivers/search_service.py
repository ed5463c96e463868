## app/drivers/search_service.py

from typing import List, Optional, Tuple

# Third party imports
from fastapi import Depends
from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

# Local imports
from app.core.db import get_async_db
from app.drivers.models import Driver
from app.utils.logger import get_logger

logger = get_logger(__name__)


def build_driver_query(search: Optional[str] = None):
    """Drivers matching a case-insensitive substring over name, email and phone"""
    query = select(Driver)

    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        query = query.where(
            or_(
                func.lower(Driver.first_name).like(term),
                func.lower(Driver.last_name).like(term),
                func.lower(Driver.email_address).like(term),
                func.lower(Driver.phone_number).like(term),
            )
        )

    return query.order_by(desc(Driver.created_on), desc(Driver.id))


def clamp_page(page: int, total_items: int, per_page: int) -> Tuple[int, int]:
    """Return (page, total_pages) with page forced into [1, total_pages]"""
    total_pages = max(1, (total_items + per_page - 1) // per_page)
    return min(max(page, 1), total_pages), total_pages


async def get_total_items(db: AsyncSession, query) -> int:
    """Get the total number of items in the query"""
    result = await db.execute(select(func.count()).select_from(query.subquery()))
    return result.scalar() or 0


async def get_paginated_results(db: AsyncSession, query, page: int, per_page: int) -> List[Driver]:
    """Get paginated results from the query"""
    result = await db.execute(query.offset((page - 1) * per_page).limit(per_page))
    return list(result.scalars().all())


class DriverDirectory:
    """Read-only driver lookup used when choosing who signs an agreement"""

    def __init__(self, db: AsyncSession = Depends(get_async_db)):
        self.db = db

    async def search(
        self, search: Optional[str] = None, page: int = 1, per_page: int = 20
    ) -> Tuple[List[Driver], int, int, int]:
        """Returns (drivers, total, page, total_pages)"""
        query = build_driver_query(search)
        total_items = await get_total_items(self.db, query)
        page, total_pages = clamp_page(page, total_items, per_page)
        drivers = await get_paginated_results(self.db, query, page, per_page)

        logger.info("Driver search", search=search, total=total_items, page=page)
        return drivers, total_items, page, total_pages
