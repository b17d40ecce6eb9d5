from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


class Shop(db.Model):
    """
    Shop scoping record.

    Every product, customer, cost layer, movement and sale belongs to exactly
    one shop. Shop management itself (members, settings, subscriptions) lives
    outside this engine; only the identity is needed here.
    """
    __tablename__ = "shops"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Shop id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "created_at": to_utc_z(self.created_at),
        }
