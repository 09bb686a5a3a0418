# ======================================
# config.py - 環境變數設定
# ======================================
import os
from dataclasses import dataclass
from datetime import timedelta, timezone


def _env_bool(name, default):
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    store_backend: str = "file"
    data_dir: str = "data"
    database_url: str = "sqlite:///reserve_eat.db"
    reservations_table: str = "reserve-eat-reservations"
    counters_table: str = "reserve-eat-counters"
    settlements_table: str = "reserve-eat-settlements"
    pool_size: int = 10
    service_duration_minutes: int = 120
    count_settled: bool = True
    tz_offset_hours: int = 8
    admin_username: str = "admin"
    admin_password: str = "change-me"
    jwt_secret: str = "your-secret-key-change-this-in-production"
    enable_admin_auth: bool = False
    allow_empty_on_load_failure: bool = False
    port: int = 8080

    @classmethod
    def from_env(cls):
        return cls(
            store_backend=os.environ.get("STORE_BACKEND", "file").strip().lower(),
            data_dir=os.environ.get("DATA_DIR", "data"),
            database_url=os.environ.get("DATABASE_URL", "sqlite:///reserve_eat.db"),
            reservations_table=os.environ.get("RESERVATIONS_TABLE", "reserve-eat-reservations"),
            counters_table=os.environ.get("COUNTERS_TABLE", "reserve-eat-counters"),
            settlements_table=os.environ.get("SETTLEMENTS_TABLE", "reserve-eat-settlements"),
            pool_size=int(os.environ.get("POOL_SIZE", 10)),
            service_duration_minutes=int(os.environ.get("SERVICE_DURATION_MINUTES", 120)),
            count_settled=_env_bool("COUNT_SETTLED", True),
            tz_offset_hours=int(os.environ.get("TZ_OFFSET_HOURS", 8)),
            admin_username=os.environ.get("ADMIN_USERNAME", "admin"),
            admin_password=os.environ.get("ADMIN_PASSWORD", "change-me"),
            jwt_secret=os.environ.get("JWT_SECRET", "your-secret-key-change-this-in-production"),
            enable_admin_auth=_env_bool("ENABLE_ADMIN_AUTH", False),
            allow_empty_on_load_failure=_env_bool("ALLOW_EMPTY_ON_LOAD_FAILURE", False),
            port=int(os.getenv("PORT", 8080)),
        )

    @property
    def service_duration(self):
        return timedelta(minutes=self.service_duration_minutes)

    @property
    def tz(self):
        return timezone(timedelta(hours=self.tz_offset_hours))
