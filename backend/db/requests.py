import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base, utcnow


class InventoryRequest(Base):
    __tablename__ = "inventory_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(Text, nullable=False, index=True)  # prepare_order|receive_inventory|inventory_share
    status = Column(Text, nullable=False, default="pending", index=True)  # pending|pending_secondary|approved|denied|completed

    requested_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    assigned_to = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    # Second-stage approver for inventory_share.
    final_assignee = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    share_from_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    share_to_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    notes = Column(Text, nullable=True)
    secondary_notes = Column(Text, nullable=True)
    file_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "RequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestItem.position",
    )

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "requested_by": self.requested_by,
            "assigned_to": self.assigned_to,
            "final_assignee": self.final_assignee,
            "share_from_user_id": self.share_from_user_id,
            "share_to_user_id": self.share_to_user_id,
            "notes": self.notes,
            "secondary_notes": self.secondary_notes,
            "file_url": self.file_url,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "items": [it.to_schema for it in self.items],
        }


class RequestItem(Base):
    __tablename__ = "request_items"
    __table_args__ = (
        CheckConstraint(
            "stock_item_id IS NOT NULL OR item_name IS NOT NULL",
            name="ck_request_items_has_reference",
        ),
        CheckConstraint("quantity > 0", name="ck_request_items_quantity_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(
        UUID(as_uuid=True),
        ForeignKey("inventory_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)

    # Either a catalog reference or a free-text name.
    stock_item_id = Column(UUID(as_uuid=True), ForeignKey("stock_items.id", ondelete="SET NULL"), nullable=True)
    item_name = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    request = relationship("InventoryRequest", back_populates="items")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "item_name": self.item_name,
            "quantity": int(self.quantity),
            "notes": self.notes,
        }
