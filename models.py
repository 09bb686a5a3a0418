# ======================================
# models.py - SQLAlchemy 資料表
# ======================================
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint

db = SQLAlchemy()

class ReservationRow(db.Model):
    __tablename__ = "reservations"
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    owner = db.Column(db.String(128), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False, default="")
    contact = db.Column(db.String(128), nullable=False, default="")
    tables = db.Column(db.Integer, nullable=False, default=1)
    date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    status = db.Column(db.String(16), nullable=False, index=True)
    payment_method = db.Column(db.String(16), nullable=True)
    created_at = db.Column(db.String(40), nullable=False, default="")
    updated_at = db.Column(db.String(40), nullable=False, default="")
    __table_args__ = (
        CheckConstraint('tables >= 1', name='ck_tables_positive'),
        CheckConstraint('start_time < end_time', name='ck_window_ordered'),
    )

class IdSequence(db.Model):
    __tablename__ = "id_sequences"
    name = db.Column(db.String(64), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)

class Settlement(db.Model):
    __tablename__ = "settlements"
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    reservation_id = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    contact = db.Column(db.String(128), nullable=False)
    tables = db.Column(db.Integer, nullable=False)
    date = db.Column(db.String(10), nullable=False)
    start_time = db.Column(db.String(5), nullable=False)
    end_time = db.Column(db.String(5), nullable=False)
    status = db.Column(db.String(16), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    settled_at = db.Column(db.String(40), nullable=False)
