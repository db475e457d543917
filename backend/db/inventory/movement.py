import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class StockMovement(Base):
    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        CheckConstraint(
            "from_user_id IS NOT NULL OR to_user_id IS NOT NULL",
            name="ck_stock_movements_has_user_party",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # 'allocation' (central -> user) | 'transfer' (user -> user) | 'return' (user -> central)
    type = Column(Text, nullable=False, index=True)

    stock_item_id = Column(
        UUID(as_uuid=True),
        ForeignKey("stock_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # NULL means the central pool.
    from_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=True, index=True)
    to_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=True, index=True)

    quantity = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    moved_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    moved_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    stock_item = relationship("StockItem", back_populates="movements")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "type": self.type,
            "stock_item_id": self.stock_item_id,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "quantity": int(self.quantity),
            "notes": self.notes,
            "moved_at": self.moved_at,
            "moved_by_user_id": self.moved_by_user_id,
        }
