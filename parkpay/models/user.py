# -*- coding: utf-8 -*-
# parkpay/models/user.py
from parkpay.database import db


class User(db.Model):
    """Application identity plus the contact fields orders fall back to.

    Profile CRUD lives elsewhere; this service only reads these rows.
    """
    __tablename__ = 'users'

    id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    postal_code = db.Column(db.String(20))
    address = db.Column(db.Text)

    def __repr__(self):
        return f"<User {self.id}>"
