# ======================================
# allocator.py - 桌位容量計算
# ======================================
from reservation import Status

DEFAULT_POOL_SIZE = 10


class CapacityAllocator:
    """計算固定桌位池在某個時段還剩幾張桌子

    Pending 與 Approved 一定佔用桌位；Settled 只有在 `count_settled` 開啟時才算。
    Rejected 與 Cancelled 不佔用。
    """

    def __init__(self, pool_size=DEFAULT_POOL_SIZE, count_settled=True):
        if pool_size < 1:
            raise ValueError("pool_size must be positive")
        self.pool_size = pool_size
        self.count_settled = count_settled

    def counted_statuses(self):
        statuses = {Status.PENDING, Status.APPROVED}
        if self.count_settled:
            statuses.add(Status.SETTLED)
        return statuses

    def occupies(self, reservation):
        return reservation.status in self.counted_statuses()

    def booked(self, window, reservations, exclude_id=None):
        counted = self.counted_statuses()
        total = 0
        for r in reservations:
            if r.id == exclude_id or r.status not in counted:
                continue
            if r.window.overlaps(window):
                total += r.tables
        return total

    def available(self, window, reservations, exclude_id=None):
        """`window` 的剩餘桌數；只有原本就超訂時才會是負數"""
        return self.pool_size - self.booked(window, reservations, exclude_id)
