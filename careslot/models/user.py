"""User model definitions."""

from sqlalchemy import Column, Integer, Numeric, String
from careslot.database import Base


class User(Base):
    """Read-only projection of an account owned by account management."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    role = Column(String)  # family/doctor/admin
    consultation_fee = Column(Numeric(10, 2), nullable=True)
