## app/drivers/router.py

from typing import Optional

# Third party imports
from fastapi import APIRouter, Depends, Query

# Local imports
from app.drivers.schemas import DriverSearchResponse, DriverSummary
from app.drivers.search_service import DriverDirectory
from app.users.models import User
from app.users.utils import require_operator
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/drivers", tags=["Drivers"])


@router.get("", response_model=DriverSearchResponse)
async def search_drivers(
    search: Optional[str] = Query(None, description="Matches name, email or phone"),
    page: int = Query(1, description="Page number, clamped to the available range"),
    per_page: int = Query(20, ge=1, le=100, description="Items per page"),
    directory: DriverDirectory = Depends(),
    current_user: User = Depends(require_operator),
) -> DriverSearchResponse:
    """
    Search drivers for agreement assignment
    """
    drivers, total, page, total_pages = await directory.search(search, page, per_page)

    return DriverSearchResponse(
        drivers=[DriverSummary.model_validate(driver) for driver in drivers],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=total_pages,
    )
