import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class StockAllocation(Base):
    __tablename__ = "stock_allocations"
    __table_args__ = (
        UniqueConstraint("stock_item_id", "user_id", name="ux_stock_allocations_item_user"),
        # Empty allocations are deleted, never stored.
        CheckConstraint("quantity > 0", name="ck_stock_allocations_quantity_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    stock_item_id = Column(
        UUID(as_uuid=True),
        ForeignKey("stock_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)

    allocated_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    allocated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    stock_item = relationship("StockItem", back_populates="allocations")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "user_id": self.user_id,
            "quantity": int(self.quantity),
            "allocated_by_user_id": self.allocated_by_user_id,
            "allocated_at": self.allocated_at,
        }
