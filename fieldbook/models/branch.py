"""Branch and field-type reference data."""

from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import Base


class Branch(Base):
    """A physical venue that hosts one or more fields."""

    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    location = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    fields = relationship("Field", back_populates="branch")

    def __repr__(self) -> str:
        return f"<Branch {self.id} {self.name}>"


class FieldType(Base):
    """Kind of surface or sport a field supports (futsal, badminton, ...)."""

    __tablename__ = "field_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    fields = relationship("Field", back_populates="field_type")
