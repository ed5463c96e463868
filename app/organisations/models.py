## app/organisations/models.py

# Third party imports
from sqlalchemy import Column, Integer, String

# Local imports
from app.core.db import Base
from app.users.models import AuditMixin


class Organisation(Base, AuditMixin):
    """Fleet operator organisation, named on issued agreements"""

    __tablename__ = "organisations"

    id = Column(Integer, primary_key=True, nullable=False)
    name = Column(String(255), nullable=False)
    logo_url = Column(String(1024), nullable=True)

    def __repr__(self):
        return f"<Organisation(id={self.id}, name='{self.name}')>"
