from __future__ import annotations

from ..extensions import db
from stockledger.money import as_str
from stockledger.time_utils import to_utc_z, utcnow


LAYER_SOURCE_PURCHASE = "purchase"
LAYER_SOURCE_RETURN = "return"
LAYER_SOURCE_INITIAL_STOCK = "initial_stock"
LAYER_SOURCE_TYPES = (LAYER_SOURCE_PURCHASE, LAYER_SOURCE_RETURN, LAYER_SOURCE_INITIAL_STOCK)

MOVEMENT_PURCHASE = "purchase"
MOVEMENT_SALE = "sale"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"
MOVEMENT_ACTIONS = (MOVEMENT_PURCHASE, MOVEMENT_SALE, MOVEMENT_ADJUSTMENT, MOVEMENT_RETURN)


class StockCostLayer(db.Model):
    """
    A batch of stock that entered inventory at one unit cost.

    FIFO order is (received_at, created_at, id) ascending. Sales drain
    remaining_quantity; nothing ever re-expands a layer or deletes it.
    Reversals (cancel, return) add a NEW layer with source_type='return'
    so the ledger stays append-only.
    """
    __tablename__ = "stock_cost_layers"
    __table_args__ = (
        db.Index("ix_cost_layers_fifo", "shop_id", "product_id", "received_at", "created_at"),
        db.CheckConstraint("remaining_quantity >= 0", name="ck_cost_layers_remaining_non_negative"),
        db.CheckConstraint("remaining_quantity <= initial_quantity", name="ck_cost_layers_remaining_le_initial"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    source_type = db.Column(db.String(16), nullable=False)
    source_id = db.Column(db.String(64), nullable=True)

    unit_cost = db.Column(db.Numeric(14, 4), nullable=False)
    initial_quantity = db.Column(db.Numeric(14, 3), nullable=False)
    remaining_quantity = db.Column(db.Numeric(14, 3), nullable=False)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, nullable=True)

    product = db.relationship("Product", backref=db.backref("cost_layers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "product_id": self.product_id,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "unit_cost": as_str(self.unit_cost),
            "initial_quantity": as_str(self.initial_quantity),
            "remaining_quantity": as_str(self.remaining_quantity),
            "received_at": to_utc_z(self.received_at),
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
        }


class StockMovement(db.Model):
    """
    Append-only audit trail of stock quantity changes.

    One row per quantity-affecting step. quantity_delta is signed
    (new_quantity - previous_quantity).

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    action = db.Column(db.String(16), nullable=False, index=True)  # purchase, sale, adjustment, return
    quantity_delta = db.Column(db.Numeric(14, 3), nullable=False)
    previous_quantity = db.Column(db.Numeric(14, 3), nullable=False)
    new_quantity = db.Column(db.Numeric(14, 3), nullable=False)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "product_id": self.product_id,
            "action": self.action,
            "quantity_delta": as_str(self.quantity_delta),
            "previous_quantity": as_str(self.previous_quantity),
            "new_quantity": as_str(self.new_quantity),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
