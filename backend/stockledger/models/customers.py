from __future__ import annotations

from ..extensions import db
from stockledger.money import as_str
from stockledger.time_utils import to_utc_z, utcnow


CREDIT_CHARGE = "charge"
CREDIT_RELEASE = "release"
CREDIT_PAYMENT = "payment"

CREDIT_PAYMENT_METHODS = ("cash", "mobile_money", "bank_transfer", "card")


class Customer(db.Model):
    """
    Shop customer with an outstanding credit balance.

    credit_balance grows with credit-method sales and shrinks with
    cancellations and repayments; it never goes below zero.
    credit_limit is advisory unless ENFORCE_CREDIT_LIMIT is configured.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_shop_name", "shop_id", "name"),
        db.CheckConstraint("credit_balance >= 0", name="ck_customers_credit_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    credit_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    credit_limit = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "credit_balance": as_str(self.credit_balance),
            "credit_limit": as_str(self.credit_limit),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerCreditTransaction(db.Model):
    """
    Append-only ledger of credit balance changes.

    TRANSACTION TYPES:
    - charge: credit-method sale added to the balance
    - release: cancelled credit sale taken back off the balance
    - payment: customer paid down outstanding credit (payment_method set)

    amount is signed (positive raises the balance). balance_after is the
    balance once this row applied.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "customer_credit_transactions"
    __table_args__ = (
        db.Index("ix_credit_txns_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    balance_after = db.Column(db.Numeric(14, 2), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    payment_method = db.Column(db.String(16), nullable=True)  # payments only
    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("credit_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "shop_id": self.shop_id,
            "transaction_type": self.transaction_type,
            "amount": as_str(self.amount),
            "balance_after": as_str(self.balance_after),
            "sale_id": self.sale_id,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
