from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockledger.money import as_str, quantity, unit_cost
from stockledger.time_utils import to_utc_z, utcnow


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"

PAYMENT_METHODS = ("cash", "mobile_money", "bank_transfer", "card", "credit")
PAYMENT_METHOD_CREDIT = "credit"


class Sale(db.Model):
    """
    Sale header.

    LIFECYCLE: completed -> cancelled (terminal). Returns and partial refunds
    leave status alone and only move refunded_amount / item returned_quantity.

    final_amount = total_amount - discount_amount + tax_amount
    0 <= refunded_amount <= final_amount
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_shop_status_created", "shop_id", "status", "created_at"),
        db.CheckConstraint("refunded_amount >= 0", name="ck_sales_refunded_non_negative"),
        db.CheckConstraint("refunded_amount <= final_amount", name="ck_sales_refunded_le_final"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Human-readable display id (e.g., "SALE-1760871234567-K3F9QZ")
    sale_number = db.Column(db.String(64), nullable=False)

    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(14, 2), nullable=False)
    refunded_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    # Cancellation audit trail
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship("SaleItem", back_populates="sale", order_by="SaleItem.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def refundable_amount(self) -> Decimal:
        return Decimal(self.final_amount) - Decimal(self.refunded_amount or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "customer_id": self.customer_id,
            "sale_number": self.sale_number,
            "total_amount": as_str(self.total_amount),
            "discount_amount": as_str(self.discount_amount),
            "tax_amount": as_str(self.tax_amount),
            "final_amount": as_str(self.final_amount),
            "refunded_amount": as_str(self.refunded_amount),
            "payment_method": self.payment_method,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """
    One sold line with its FIFO cost of goods.

    cost_basis is the ordered list of {"quantity", "unit_cost"} fragments
    drained from cost layers (decimal strings). avg_cost is what reversals
    restore at, so a cancel or return is cost-neutral whatever happened to
    the layers since.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("returned_quantity >= 0", name="ck_sale_items_returned_non_negative"),
        db.CheckConstraint("returned_quantity <= quantity", name="ck_sale_items_returned_le_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_price = db.Column(db.Numeric(14, 2), nullable=False)
    returned_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    cost_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    avg_cost = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    cost_basis_json = db.Column(db.JSON, nullable=False, default=list)
    # Units costed at the catalog fallback price because layers ran out
    cost_fallback_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    @property
    def returnable_quantity(self) -> Decimal:
        return Decimal(self.quantity) - Decimal(self.returned_quantity or 0)

    @property
    def cost_basis(self) -> list[dict]:
        return [
            {"quantity": quantity(f["quantity"]), "unit_cost": unit_cost(f["unit_cost"])}
            for f in (self.cost_basis_json or [])
        ]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": as_str(self.quantity),
            "unit_price": as_str(self.unit_price),
            "discount_amount": as_str(self.discount_amount),
            "total_price": as_str(self.total_price),
            "returned_quantity": as_str(self.returned_quantity),
            "cost_total": as_str(self.cost_total),
            "avg_cost": as_str(self.avg_cost),
            "cost_basis": list(self.cost_basis_json or []),
            "cost_fallback_quantity": as_str(self.cost_fallback_quantity),
            "created_at": to_utc_z(self.created_at),
        }


class SaleReturn(db.Model):
    """
    Partial item return: stock comes back, money goes out.

    IMMUTABLE: one row per return request, never updated.
    """
    __tablename__ = "sale_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    # Cost the returned units were put back into the ledger at
    unit_cost = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True, order_by="SaleReturn.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "quantity": as_str(self.quantity),
            "amount": as_str(self.amount),
            "unit_cost": as_str(self.unit_cost),
            "reason": self.reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SaleRefund(db.Model):
    """
    Monetary-only refund (goodwill, price correction). No inventory effect.

    IMMUTABLE: one row per refund, never updated.
    """
    __tablename__ = "sale_refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    affects_stock = db.Column(db.Boolean, nullable=False, default=False)
    reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("refunds", lazy=True, order_by="SaleRefund.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "sale_id": self.sale_id,
            "amount": as_str(self.amount),
            "affects_stock": self.affects_stock,
            "reason": self.reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
