### app/vehicles/models.py

# Third party imports
from sqlalchemy import (
    Column,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

# Local imports
from app.core.db import Base
from app.users.models import AuditMixin


class Vehicle(Base, AuditMixin):
    """
    Vehicle model
    """

    __tablename__ = "vehicles"

    id = Column(
        Integer, primary_key=True, nullable=False, comment="Primary Key for Vehicles"
    )
    vin = Column(String(64), nullable=True, comment="Vehicle Identification Number")
    make = Column(String(45), nullable=True, comment="Make of the vehicle")
    model = Column(String(45), nullable=True, comment="Model of the vehicle")
    year = Column(Integer, nullable=True, comment="Model year of the vehicle")
    license_plate = Column(String(32), nullable=True, index=True)
    vehicle_status = Column(String(32), nullable=True, default="available")

    inspections = relationship(
        "VehicleInspection", back_populates="vehicle", order_by="VehicleInspection.id"
    )

    @property
    def display_name(self) -> str:
        """Year, make and model joined, e.g. '2022 Toyota Corolla'"""
        parts = [str(part) for part in (self.year, self.make, self.model) if part]
        return " ".join(parts) if parts else "Unknown Vehicle"

    def __repr__(self):
        return f"<Vehicle(id={self.id}, plate='{self.license_plate}', vin='{self.vin}')>"


class VehicleInspection(Base, AuditMixin):
    """
    Vehicle Inspection model
    """

    __tablename__ = "vehicle_inspections"

    id = Column(
        Integer,
        primary_key=True,
        nullable=False,
        comment="Primary Key for Vehicle Inspections",
    )
    vehicle_id = Column(
        Integer,
        ForeignKey("vehicles.id"),
        nullable=False,
        comment="Foreign Key to Vehicle table",
    )
    inspector_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="User who carried out the inspection",
    )
    inspection_status = Column(String(32), nullable=True, default="pending")
    inspection_date = Column(Date, nullable=True, comment="Date of inspection")
    exterior_condition = Column(String(255), nullable=True)
    interior_condition = Column(String(255), nullable=True)
    mechanical_condition = Column(String(255), nullable=True)
    additional_notes = Column(Text, nullable=True)

    vehicle = relationship("Vehicle", back_populates="inspections")
    inspector = relationship("User", foreign_keys=[inspector_id], lazy="selectin")

    def __repr__(self):
        return f"<VehicleInspection(id={self.id}, vehicle_id={self.vehicle_id}, date={self.inspection_date})>"
