# ======================================
# ledger.py - 訂位帳本與狀態機
# ======================================
import logging
import threading
from datetime import datetime, timedelta, timezone

from allocator import CapacityAllocator
from errors import CapacityExceeded, InvalidRequest, InvalidState, NotFound
from reservation import PaymentMethod, Reservation, Status, TimeWindow

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_DURATION = timedelta(hours=2)

# 允許的狀態轉換；終態不能再轉換
TRANSITIONS = {
    Status.PENDING: {Status.APPROVED, Status.REJECTED, Status.CANCELLED},
    Status.APPROVED: {Status.SETTLED, Status.CANCELLED},
    Status.SETTLED: set(),
    Status.REJECTED: set(),
    Status.CANCELLED: set(),
}


class ReservationLedger:
    """保存所有訂位紀錄，負責建立預約與狀態轉換

    每個操作都在同一把鎖內執行，容量檢查與之後的寫入不會和其他請求交錯。
    寫入先交給儲存層保存，成功後才更新記憶體；儲存層失敗時帳本保持原狀。
    """

    def __init__(self, store, allocator=None, service_duration=DEFAULT_SERVICE_DURATION,
                 tz=timezone.utc, reservations=()):
        self.store = store
        self.allocator = allocator or CapacityAllocator()
        self.service_duration = service_duration
        self.tz = tz
        self._records = {r.id: r for r in reservations}
        self._lock = threading.RLock()

    @classmethod
    def load(cls, store, **kwargs):
        """從儲存層載入所有訂位並建立帳本"""
        records = store.load_reservations()
        logger.info(f"Loaded {len(records)} reservation(s) from {type(store).__name__}")
        return cls(store, reservations=records, **kwargs)

    def flush(self):
        with self._lock:
            self.store.save_all(self._sorted(self._records.values()))
            logger.info(f"Flushed {len(self._records)} reservation(s)")

    # ---------- 工具 ----------
    def _now(self):
        return datetime.now(self.tz).isoformat(timespec="seconds")

    def _window(self, day, start):
        return TimeWindow.starting_at(day, start, self.service_duration)

    @staticmethod
    def _sorted(records):
        return sorted(records, key=lambda r: r.numeric_id)

    @staticmethod
    def _check_tables(tables):
        if isinstance(tables, bool) or not isinstance(tables, int) or tables < 1:
            raise InvalidRequest("Number of tables must be a positive integer.")

    def _check_capacity(self, tables, window, exclude_id=None):
        free = self.allocator.available(window, self._records.values(), exclude_id=exclude_id)
        if tables > free:
            logger.warning(
                f"Capacity check failed for {window.date} {window.start}-{window.end}: "
                f"requested {tables}, available {free}"
            )
            raise CapacityExceeded(tables, free)

    def _require(self, reservation_id):
        record = self._records.get(str(reservation_id))
        if record is None:
            raise NotFound(f"Reservation {reservation_id} not found.")
        return record

    def _owned(self, reservation_id, owner):
        record = self._records.get(str(reservation_id))
        if record is None or record.owner != owner:
            raise NotFound(f"Reservation {reservation_id} not found for this customer.")
        return record

    def _transition(self, record, target):
        if target not in TRANSITIONS[record.status]:
            logger.warning(f"Rejected transition {record.status.value} -> {target.value} for {record.id}")
            raise InvalidState(
                f"Reservation {record.id} is {record.status.value} and cannot become {target.value}."
            )
        return record.copy(status=target, updated_at=self._now())

    def _commit(self, record):
        self.store.save_reservation(record)
        self._records[record.id] = record
        return record.copy()

    # ---------- 寫入操作 ----------
    def book(self, owner, name, contact, tables, day, start):
        if not owner:
            raise InvalidRequest("An owner key is required to book.")
        self._check_tables(tables)
        window = self._window(day, start)
        with self._lock:
            self._check_capacity(tables, window)
            now = self._now()
            record = Reservation(
                id=self.store.next_id(),
                owner=owner,
                party_name=name,
                contact=contact,
                tables=tables,
                window=window,
                status=Status.PENDING,
                created_at=now,
                updated_at=now,
            )
            saved = self._commit(record)
        logger.info(f"Booked {saved.id}: {tables} table(s) on {window.date} {window.start}-{window.end}")
        return saved

    def edit(self, reservation_id, owner, new_tables, new_date, new_start):
        self._check_tables(new_tables)
        window = self._window(new_date, new_start)
        with self._lock:
            current = self._owned(reservation_id, owner)
            if current.status != Status.PENDING:
                raise InvalidState(f"Reservation {current.id} is {current.status.value}; only Pending reservations can be edited.")
            self._check_capacity(new_tables, window, exclude_id=current.id)
            saved = self._commit(current.copy(tables=new_tables, window=window, updated_at=self._now()))
        logger.info(f"Edited {saved.id}: {new_tables} table(s) on {window.date} {window.start}-{window.end}")
        return saved

    def approve(self, reservation_id):
        with self._lock:
            record = self._require(reservation_id)
            saved = self._commit(self._transition(record, Status.APPROVED))
        logger.info(f"Approved {saved.id}")
        return saved

    def reject(self, reservation_id):
        with self._lock:
            record = self._require(reservation_id)
            saved = self._commit(self._transition(record, Status.REJECTED))
        logger.info(f"Rejected {saved.id}")
        return saved

    def cancel(self, reservation_id, owner):
        with self._lock:
            record = self._owned(reservation_id, owner)
            saved = self._commit(self._transition(record, Status.CANCELLED))
        logger.info(f"Cancelled {saved.id}")
        return saved

    def settle(self, reservation_id, payment):
        with self._lock:
            record = self._require(reservation_id)
            settled = self._transition(record, Status.SETTLED)
            method = PaymentMethod.parse(payment)
            settled = settled.copy(payment_method=method)
            # 結帳紀錄以訂單編號去重，存檔失敗後重試不會重複記錄
            self.store.append_settlement(settled.settlement_entry(settled.updated_at))
            saved = self._commit(settled)
        logger.info(f"Settled {saved.id} via {method.value}")
        return saved

    # ---------- 查詢 ----------
    def get(self, reservation_id):
        with self._lock:
            return self._require(reservation_id).copy()

    def exists(self, reservation_id):
        return str(reservation_id) in self._records

    def status_of(self, reservation_id):
        record = self._records.get(str(reservation_id))
        return record.status if record else None

    def list_all(self):
        with self._lock:
            return [r.copy() for r in self._sorted(self._records.values())]

    def list_by_status(self, status):
        status = Status.parse(status)
        return [r for r in self.list_all() if r.status == status]

    def list_by_owner(self, owner):
        return [r for r in self.list_all() if r.owner == owner]

    def list_by_owner_and_status(self, owner, status):
        status = Status.parse(status)
        return [r for r in self.list_by_owner(owner) if r.status == status]

    def available(self, day, start):
        """`day` 當天 `start` 開始的時段還剩幾張桌子"""
        window = self._window(day, start)
        with self._lock:
            return self.allocator.available(window, self._records.values())
