from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow


DELIVERY_STATUS_PENDING = "pending"
DELIVERY_STATUS_PREPARING = "preparing"
DELIVERY_STATUS_LOADING = "loading"
DELIVERY_STATUS_IN_TRANSIT = "in_transit"
DELIVERY_STATUS_DELIVERED = "delivered"
DELIVERY_STATUS_CANCELLED = "cancelled"
# Legacy marker; rows in this state are removed by the archive clear
DELIVERY_STATUS_ARCHIVED = "archived"


class Delivery(db.Model):
    """
    A physical shipment, optionally bound 1:1 to a DeliveryRequest.

    LIFECYCLE:
    pending -> preparing -> loading -> in_transit -> delivered
    Any non-terminal state -> cancelled (archive only).

    When created from a request, id == request_id so the binding joins on
    the primary key. "Delete" archives the row; only the archive clear
    removes it.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        db.UniqueConstraint("tracking_number", name="uq_deliveries_tracking_number"),
        db.UniqueConstraint("request_id", name="uq_deliveries_request_id"),
        db.Index("ix_deliveries_branch_status", "branch_id", "status"),
        db.Index("ix_deliveries_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tracking_number = db.Column(db.String(50), nullable=False)

    recipient_name = db.Column(db.String(100), nullable=False)
    recipient_address = db.Column(db.String(200), nullable=False)
    recipient_phone = db.Column(db.String(20), nullable=True)
    package_description = db.Column(db.String(500), nullable=True)
    weight = db.Column(db.Numeric(10, 2), nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)

    # pending, preparing, loading, in_transit, delivered, cancelled
    status = db.Column(db.String(20), nullable=False, default=DELIVERY_STATUS_PENDING, index=True)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("delivery_requests.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Set once, on entering delivered
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch")
    creator = db.relationship("User", foreign_keys=[created_by])
    receiver = db.relationship("User", foreign_keys=[received_by])
    request = db.relationship("DeliveryRequest", foreign_keys=[request_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tracking_number": self.tracking_number,
            "recipient_name": self.recipient_name,
            "recipient_address": self.recipient_address,
            "recipient_phone": self.recipient_phone,
            "package_description": self.package_description,
            "weight": float(self.weight) if self.weight is not None else None,
            "delivery_date": to_iso_date(self.delivery_date),
            "status": self.status,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "created_by": self.created_by,
            "created_by_user": self.creator.username if self.creator else None,
            "request_id": self.request_id,
            "request_status": self.request.request_status if self.request else None,
            "received_at": to_utc_z(self.received_at),
            "received_by": self.received_by,
            "is_archived": self.is_archived,
            "archived_by": self.archived_by,
            "archived_at": to_utc_z(self.archived_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
