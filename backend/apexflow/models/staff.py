from __future__ import annotations

from ..extensions import db


class StaffMember(db.Model):
    """
    Fulfillment staff directory entry.

    Only used to validate handler assignment; login is handled elsewhere.
    """
    __tablename__ = "staff_members"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(32), nullable=False)  # Super Admin, Picker, Checker, Dispatcher, GR
    phone = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "name": self.name,
            "role": self.role,
            "phone": self.phone,
            "is_active": self.is_active,
        }
