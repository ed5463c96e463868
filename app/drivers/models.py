## app/drivers/models.py

# Third party imports
from sqlalchemy import Column, Integer, String, Text

# Local imports
from app.core.db import Base
from app.users.models import AuditMixin


class Driver(Base, AuditMixin):
    """
    Driver model
    """

    __tablename__ = "drivers"

    id = Column(
        Integer, primary_key=True, nullable=False, comment="Primary Key for Driver"
    )
    first_name = Column(String(128), nullable=True, comment="First Name of the Driver")
    last_name = Column(String(128), nullable=True, comment="Last Name of the Driver")
    email_address = Column(String(128), nullable=True, index=True)
    phone_number = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)

    @property
    def full_name(self) -> str:
        """First and last name joined"""
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self):
        return f"<Driver(id={self.id}, name='{self.full_name}', email='{self.email_address}')>"
