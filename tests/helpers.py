from datetime import time

from errors import StorageUnavailable


def t(value):
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


class MemoryStore:
    """In-process store used where durability is not under test."""

    VERSION = "test"

    def __init__(self):
        self.rows = {}
        self.last_id = 0
        self.settlements = []
        self.fail_saves = False
        self.fail_settlements = False

    def test_connection(self):
        return True

    def load_reservations(self):
        return [r.copy() for r in sorted(self.rows.values(), key=lambda r: r.numeric_id)]

    def save_reservation(self, reservation):
        if self.fail_saves:
            raise StorageUnavailable("disk full")
        self.rows[reservation.id] = reservation.copy()

    def save_all(self, reservations):
        self.rows = {r.id: r.copy() for r in reservations}

    def next_id(self):
        self.last_id += 1
        return str(self.last_id)

    def append_settlement(self, entry):
        if self.fail_settlements:
            raise StorageUnavailable("audit log unavailable")
        if any(e["ID"] == entry["ID"] for e in self.settlements):
            return
        self.settlements.append(dict(entry))

    def list_settlements(self):
        return list(self.settlements)
