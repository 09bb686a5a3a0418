# ======================================
# reservation.py - 時段與訂位紀錄
# ======================================
import enum
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta

from errors import InvalidRequest

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


class Status(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    SETTLED = "Settled"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self):
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        for status in cls:
            if status.value.lower() == str(value).strip().lower():
                return status
        raise InvalidRequest(f"Unknown status: {value}")


TERMINAL_STATUSES = frozenset({Status.SETTLED, Status.REJECTED, Status.CANCELLED})


class PaymentMethod(str, enum.Enum):
    MAYA = "Maya"
    GCASH = "GCash"
    CARD = "Card"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if not value:
            raise InvalidRequest("A payment method is required to settle a reservation.")
        for method in cls:
            if method.value.lower() == str(value).strip().lower():
                return method
        raise InvalidRequest(f"Unknown payment method: {value}")


@dataclass(frozen=True)
class TimeWindow:
    date: date
    start: time
    end: time

    @classmethod
    def starting_at(cls, day, start, duration):
        """從 `start` 開始、長度 `duration` 的時段；必須在當天結束"""
        begin = datetime.combine(day, start)
        finish = begin + duration
        if duration <= timedelta(0) or finish.date() != day or finish.time() <= start:
            raise InvalidRequest(
                f"A booking starting at {start.strftime(TIME_FORMAT)} would run past midnight."
            )
        return cls(day, start, finish.time())

    def overlaps(self, other):
        if self.date != other.date:
            return False
        return not (self.end <= other.start or self.start >= other.end)


@dataclass
class Reservation:
    id: str
    owner: str
    party_name: str
    contact: str
    tables: int
    window: TimeWindow
    status: Status = Status.PENDING
    payment_method: PaymentMethod = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def numeric_id(self):
        return int(self.id)

    def copy(self, **changes):
        return replace(self, **changes)

    def to_dict(self):
        return {
            "id": self.id,
            "owner": self.owner,
            "name": self.party_name,
            "contact": self.contact,
            "tables": self.tables,
            "date": self.window.date.strftime(DATE_FORMAT),
            "start": self.window.start.strftime(TIME_FORMAT),
            "end": self.window.end.strftime(TIME_FORMAT),
            "status": self.status.value,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data):
        window = TimeWindow(
            datetime.strptime(data["date"], DATE_FORMAT).date(),
            datetime.strptime(data["start"], TIME_FORMAT).time(),
            datetime.strptime(data["end"], TIME_FORMAT).time(),
        )
        payment = data.get("payment_method")
        return cls(
            id=str(data["id"]),
            owner=data["owner"],
            party_name=data.get("name", ""),
            contact=data.get("contact", ""),
            tables=int(data["tables"]),
            window=window,
            status=Status.parse(data["status"]),
            payment_method=PaymentMethod.parse(payment) if payment else None,
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
        )

    def settlement_entry(self, settled_at):
        """結帳快照，每筆訂單只寫一次"""
        return {
            "ID": self.id,
            "Name": self.party_name,
            "Contact": self.contact,
            "Tables": self.tables,
            "Date": self.window.date.strftime(DATE_FORMAT),
            "Start": self.window.start.strftime(TIME_FORMAT),
            "End": self.window.end.strftime(TIME_FORMAT),
            "Status": self.status.value,
            "Payment Method": self.payment_method.value if self.payment_method else None,
            "Settled At": settled_at,
        }
