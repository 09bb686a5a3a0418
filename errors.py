# ======================================
# errors.py - 訂位錯誤類型
# ======================================


class ReservationError(Exception):
    """所有可回報給呼叫端的帳本錯誤的基底類別"""

    code = "reservation_error"
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"success": False, "error": self.code, "message": self.message}


class NotFound(ReservationError):
    code = "not_found"
    status_code = 404


class InvalidState(ReservationError):
    code = "invalid_state"
    status_code = 409


class CapacityExceeded(ReservationError):
    code = "capacity_exceeded"
    status_code = 409

    def __init__(self, requested, available):
        super().__init__(
            f"Requested {requested} table(s) but only {max(available, 0)} available for this window."
        )
        self.requested = requested
        self.available = available

    def to_dict(self):
        data = super().to_dict()
        data["available"] = max(self.available, 0)
        return data


class InvalidRequest(ReservationError):
    code = "invalid_request"
    status_code = 400


class StorageUnavailable(ReservationError):
    code = "storage_unavailable"
    status_code = 503
