import uuid

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class StockItem(Base):
    __tablename__ = "stock_items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_stock_items_quantity_non_negative"),
        CheckConstraint("price >= 0", name="ck_stock_items_price_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, index=True)
    category_id = Column(UUID(as_uuid=True), ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False, index=True)
    specialty_id = Column(UUID(as_uuid=True), ForeignKey("specialties.id", ondelete="SET NULL"), nullable=True, index=True)

    # Nominal central-pool total. Allocating to a user does not reduce it.
    quantity = Column(Integer, nullable=False, default=0)
    price = Column(Integer, nullable=False, default=0)  # cents
    expiry = Column(Date, nullable=True, index=True)
    unique_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    category = relationship("Category", back_populates="stock_items")
    specialty = relationship("Specialty")
    allocations = relationship("StockAllocation", back_populates="stock_item")
    movements = relationship("StockMovement", back_populates="stock_item")
