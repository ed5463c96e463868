## app/drivers/schemas.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class DriverSummary(BaseModel):
    """Driver fields shown in the directory and on agreements"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str = ""
    email_address: Optional[str] = None
    phone_number: Optional[str] = None
    created_on: Optional[datetime] = None


class DriverSearchResponse(BaseModel):
    """One page of the driver directory"""
    drivers: List[DriverSummary]
    total: int
    page: int
    per_page: int
    total_pages: int
