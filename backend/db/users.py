from fastapi_users.db import SQLAlchemyBaseUserTableUUID
from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID

from .database import Base, utcnow


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"

    name = Column(String, nullable=False, default="")
    role = Column(Text, nullable=False, default="medical_rep", index=True)
    region = Column(String, nullable=True)
    specialty_id = Column(UUID(as_uuid=True), ForeignKey("specialties.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def to_schema(self):
        """Convert User model to schema dictionary format"""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "region": self.region,
            "specialty_id": self.specialty_id,
            "is_active": self.is_active,
        }
