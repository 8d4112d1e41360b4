from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow


REQUEST_STATUS_PENDING = "pending"
REQUEST_STATUS_APPROVED = "approved"
REQUEST_STATUS_REJECTED = "rejected"
REQUEST_STATUS_PROCESSING = "processing"
REQUEST_STATUS_DELIVERED = "delivered"
# Legacy marker; rows in this state are removed by the archive clear
REQUEST_STATUS_ARCHIVED = "archived"


def _decimal_out(value):
    return float(value) if value is not None else None


class DeliveryRequest(db.Model):
    """
    A branch's ask for items to be delivered.

    LIFECYCLE:
    1. pending: created by a branch user, awaiting review
    2. approved / rejected: first (and only) review decision
    3. processing: a delivery was created from it, or that delivery is moving
    4. delivered: the bound delivery was delivered

    A rejected request always carries a reason. total_amount is informational
    and stored as submitted.
    """
    __tablename__ = "delivery_requests"
    __table_args__ = (
        db.Index("ix_delivery_requests_branch_status", "branch_id", "request_status"),
        db.Index("ix_delivery_requests_created", "created_at"),
        db.CheckConstraint(
            "request_status <> 'rejected' OR (reason IS NOT NULL AND reason <> '')",
            name="ck_delivery_requests_rejected_reason",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    delivery_date = db.Column(db.Date, nullable=True)
    priority = db.Column(db.String(16), nullable=False, default="medium")
    notes = db.Column(db.Text, nullable=True)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # pending, approved, rejected, processing, delivered
    request_status = db.Column(db.String(20), nullable=False, default=REQUEST_STATUS_PENDING, index=True)
    processed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reason = db.Column(db.Text, nullable=True)

    # Back-reference to the delivery created from this request (same id)
    delivery_id = db.Column(
        db.Integer,
        db.ForeignKey("deliveries.id", use_alter=True, name="fk_delivery_requests_delivery_id", ondelete="SET NULL"),
        nullable=True,
    )

    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch = db.relationship("Branch")
    creator = db.relationship("User", foreign_keys=[created_by_id])
    processor = db.relationship("User", foreign_keys=[processed_by])
    items = db.relationship(
        "DeliveryRequestItem",
        back_populates="request",
        order_by="DeliveryRequestItem.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "created_by_id": self.created_by_id,
            "requested_by": self.creator.full_name if self.creator else None,
            "username": self.creator.username if self.creator else None,
            "delivery_date": to_iso_date(self.delivery_date),
            "priority": self.priority,
            "notes": self.notes,
            "total_amount": _decimal_out(self.total_amount),
            "request_status": self.request_status,
            "processed_by": self.processed_by,
            "processor_username": self.processor.username if self.processor else None,
            "processor_full_name": self.processor.full_name if self.processor else None,
            "reason": self.reason,
            "delivery_id": self.delivery_id,
            "is_archived": self.is_archived,
            "archived_by": self.archived_by,
            "archived_at": to_utc_z(self.archived_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class DeliveryRequestItem(db.Model):
    """Line item of a request. Written once with its parent, deleted only with it."""
    __tablename__ = "delivery_request_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_delivery_request_items_quantity_positive"),
        db.CheckConstraint("unit_price >= 0", name="ck_delivery_request_items_unit_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("delivery_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    item_code = db.Column(db.String(50), nullable=True)
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Numeric(12, 2), nullable=False)
    unit = db.Column(db.String(20), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    request = db.relationship("DeliveryRequest", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "item_code": self.item_code,
            "description": self.description,
            "quantity": _decimal_out(self.quantity),
            "unit": self.unit,
            "unit_price": _decimal_out(self.unit_price),
            "subtotal": _decimal_out(self.subtotal),
        }


class RequestProcessing(db.Model):
    """
    Advisory claim: "user X is converting this approved request into a delivery".

    At most one row per request (unique request_id), so two operators cannot
    both hold the claim. Rows never expire on their own.
    """
    __tablename__ = "request_processing"
    __table_args__ = (
        db.UniqueConstraint("request_id", name="uq_request_processing_request_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("delivery_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User")
    request = db.relationship("DeliveryRequest")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "full_name": self.user.full_name if self.user else None,
            "started_at": to_utc_z(self.started_at),
        }
