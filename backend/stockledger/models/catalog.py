from __future__ import annotations

from ..extensions import db
from stockledger.money import as_str
from stockledger.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with its current stock level.

    stock_quantity is the authoritative on-hand figure. It is only mutated
    through catalog_service (Decimal read plus version compare-and-swap), never
    by assigning the attribute directly, and can never go below zero.

    cost_price is the fallback unit cost used when FIFO cost layers are
    exhausted or unreadable. receive_stock keeps it at the latest receive cost.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "sku", name="uq_products_shop_sku"),
        db.Index("ix_products_shop_name", "shop_id", "name"),
        db.Index("ix_products_shop_active", "shop_id", "is_active"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, index=True)

    stock_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    min_stock_level = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    cost_price = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    selling_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    shop = db.relationship("Shop", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} shop_id={self.shop_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "sku": self.sku,
            "name": self.name,
            "barcode": self.barcode,
            "stock_quantity": as_str(self.stock_quantity),
            "min_stock_level": as_str(self.min_stock_level),
            "cost_price": as_str(self.cost_price),
            "selling_price": as_str(self.selling_price),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
