# ======================================
# sql_store.py - SQLAlchemy 儲存層 (Flask-SQLAlchemy models)
# ======================================
import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from errors import StorageUnavailable
from models import IdSequence, ReservationRow, Settlement, db
from reservation import PaymentMethod, Reservation, Status, TimeWindow

logger = logging.getLogger(__name__)

SEQUENCE_NAME = "reservation_id"


def _to_row(r):
    return ReservationRow(
        id=r.numeric_id,
        owner=r.owner,
        name=r.party_name,
        contact=r.contact,
        tables=r.tables,
        date=r.window.date,
        start_time=r.window.start,
        end_time=r.window.end,
        status=r.status.value,
        payment_method=r.payment_method.value if r.payment_method else None,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def _from_row(row):
    return Reservation(
        id=str(row.id),
        owner=row.owner,
        party_name=row.name,
        contact=row.contact,
        tables=row.tables,
        window=TimeWindow(row.date, row.start_time, row.end_time),
        status=Status.parse(row.status),
        payment_method=PaymentMethod.parse(row.payment_method) if row.payment_method else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlStore:
    VERSION = "1.0-sqlalchemy"

    def __init__(self, app):
        self.app = app
        if "sqlalchemy" not in app.extensions:
            db.init_app(app)
        with app.app_context():
            try:
                db.create_all()
            except SQLAlchemyError as e:
                logger.error(f"創建資料表失敗: {e}")
                raise StorageUnavailable(f"Database unavailable: {e}") from e

    def test_connection(self):
        with self.app.app_context():
            try:
                db.session.execute(text("SELECT 1"))
                return True
            except SQLAlchemyError as e:
                logger.error(f"資料庫連接失敗: {e}")
                return False

    # ---------- 預訂操作 ----------
    def load_reservations(self):
        with self.app.app_context():
            try:
                rows = db.session.execute(db.select(ReservationRow).order_by(ReservationRow.id)).scalars().all()
                return [_from_row(row) for row in rows]
            except SQLAlchemyError as e:
                logger.error(f"獲取所有預訂失敗: {e}")
                raise StorageUnavailable(f"Cannot read reservations: {e}") from e

    def save_reservation(self, reservation):
        with self.app.app_context():
            try:
                db.session.merge(_to_row(reservation))
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"保存預訂數據失敗 {reservation.id}: {e}")
                raise StorageUnavailable(f"Cannot save reservation: {e}") from e
        logger.info(f"預訂數據已保存: {reservation.id} ({reservation.status.value})")

    def save_all(self, reservations):
        with self.app.app_context():
            try:
                for r in reservations:
                    db.session.merge(_to_row(r))
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"批量保存預訂失敗: {e}")
                raise StorageUnavailable(f"Cannot save reservations: {e}") from e

    # ---------- 編號計數器 ----------
    def next_id(self):
        """在同一個交易內遞增並提交序號"""
        with self.app.app_context():
            try:
                result = db.session.execute(
                    db.update(IdSequence)
                    .where(IdSequence.name == SEQUENCE_NAME)
                    .values(last_value=IdSequence.last_value + 1)
                )
                if result.rowcount == 0:
                    db.session.add(IdSequence(name=SEQUENCE_NAME, last_value=1))
                    db.session.flush()
                issued = db.session.execute(
                    db.select(IdSequence.last_value).where(IdSequence.name == SEQUENCE_NAME)
                ).scalar_one()
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"遞增計數器失敗: {e}")
                raise StorageUnavailable(f"Cannot issue reservation id: {e}") from e
        return str(issued)

    # ---------- 結帳紀錄 ----------
    def append_settlement(self, entry):
        """每筆訂單只記一次；重試時已存在的紀錄直接略過"""
        with self.app.app_context():
            try:
                existing = db.session.execute(
                    db.select(Settlement.id).where(Settlement.reservation_id == entry["ID"])
                ).scalar_one_or_none()
                if existing is not None:
                    logger.info(f"結帳紀錄已存在，略過: {entry['ID']}")
                    return
                db.session.add(Settlement(
                    reservation_id=entry["ID"],
                    name=entry["Name"],
                    contact=entry["Contact"],
                    tables=entry["Tables"],
                    date=entry["Date"],
                    start_time=entry["Start"],
                    end_time=entry["End"],
                    status=entry["Status"],
                    payment_method=entry["Payment Method"],
                    settled_at=entry["Settled At"],
                ))
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"保存結帳紀錄失敗 {entry.get('ID')}: {e}")
                raise StorageUnavailable(f"Cannot write settlement log: {e}") from e
        logger.info(f"結帳紀錄已保存: {entry['ID']} ({entry['Payment Method']})")

    def list_settlements(self):
        with self.app.app_context():
            try:
                rows = db.session.execute(db.select(Settlement).order_by(Settlement.id)).scalars().all()
            except SQLAlchemyError as e:
                logger.error(f"獲取結帳紀錄失敗: {e}")
                raise StorageUnavailable(f"Cannot read settlement log: {e}") from e
            return [
                {
                    "ID": row.reservation_id,
                    "Name": row.name,
                    "Contact": row.contact,
                    "Tables": row.tables,
                    "Date": row.date,
                    "Start": row.start_time,
                    "End": row.end_time,
                    "Status": row.status,
                    "Payment Method": row.payment_method,
                    "Settled At": row.settled_at,
                }
                for row in rows
            ]
