# app/users/models.py

from typing import List, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer,
    String, Table, func,
)
from sqlalchemy.orm import declared_attr, relationship, Mapped, mapped_column

from app.core.db import Base

# --- Mixins ---
class AuditMixin:
    """Mixin for auditing fields."""

    @declared_attr
    def created_by(cls):
        """
        Column for the user who created this record
        """
        return Column(
            Integer,
            ForeignKey("users.id", ondelete="SET NULL", onupdate="CASCADE"),
            nullable=True,
            comment="User who created this record",
        )

    @declared_attr
    def modified_by(cls):
        """
        Column for the user who last modified this record
        """
        return Column(
            Integer,
            ForeignKey("users.id", ondelete="SET NULL", onupdate="CASCADE"),
            nullable=True,
            comment="User who last modified this record",
        )

    @declared_attr
    def created_on(cls):
        return Column(
            DateTime(timezone=True),
            server_default=func.now(),
            comment="Timestamp when this record was created",
        )

    @declared_attr
    def updated_on(cls):
        return Column(
            DateTime(timezone=True),
            onupdate=func.now(),
            server_default=func.now(),
            comment="Timestamp when this record was last updated",
        )

    is_active = Column(
        Boolean, default=True, comment="Flag to keep track of record is active or not"
    )
# --- End of Mixins ---


# --- Association table for many-to-many relationship between users and roles ---
user_role_association = Table(
    "users_and_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


class User(Base, AuditMixin):
    """Operator account"""
    __tablename__ = "users"

    # --- Columns ---
    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    email_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # --- Relationships ---
    roles: Mapped[List["Role"]] = relationship(
        back_populates="users", secondary=user_role_association, lazy="selectin"
    )

    @property
    def name(self) -> str:
        """
        Full name, falling back to the email address
        """
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or (self.email_address or "")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email_address}', is_active={self.is_active})>"


class Role(Base, AuditMixin):
    """Role model"""
    __tablename__ = "roles"

    # --- Columns ---
    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # --- Relationships ---
    users: Mapped[List["User"]] = relationship(
        back_populates="roles", secondary=user_role_association
    )

    def __repr__(self):
        return f"<Role(id={self.id}, name='{self.name}')>"
