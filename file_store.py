# ======================================
# file_store.py - 本機 JSON 儲存層 (原子性改名寫入)
# ======================================
import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from errors import InvalidRequest, StorageUnavailable
from reservation import Reservation

logger = logging.getLogger(__name__)


class FileStore:
    """在同一個資料夾保存訂位、編號計數器與結帳紀錄

    reservations.json  訂位資料 (JSON 陣列)
    last_id            最後發出的編號 (單一整數)
    settlements.jsonl  只能附加，每筆結帳一行 JSON
    """

    VERSION = "1.0-atomic-json"

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)
        self.reservations_path = self.data_dir / "reservations.json"
        self.counter_path = self.data_dir / "last_id"
        self.settlements_path = self.data_dir / "settlements.jsonl"
        self.lock = threading.Lock()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"無法建立資料夾 {self.data_dir}: {e}")
            raise StorageUnavailable(f"Data directory unavailable: {e}") from e

    # ---------- 工具 ----------
    def _atomic_write(self, path, text):
        fd, tmp = tempfile.mkstemp(dir=str(self.data_dir), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _read_records(self):
        if not self.reservations_path.exists():
            return []
        with open(self.reservations_path, encoding="utf-8") as fh:
            return json.load(fh)

    def _write_records(self, rows):
        self._atomic_write(self.reservations_path, json.dumps(rows, ensure_ascii=False, indent=2))

    def test_connection(self):
        return self.data_dir.is_dir() and os.access(self.data_dir, os.W_OK)

    # ---------- 預訂操作 ----------
    def load_reservations(self):
        with self.lock:
            try:
                rows = self._read_records()
                records = [Reservation.from_dict(row) for row in rows]
            except (OSError, ValueError, KeyError, TypeError, InvalidRequest) as e:
                logger.error(f"讀取預訂資料失敗 {self.reservations_path}: {e}")
                raise StorageUnavailable(f"Cannot read reservations: {e}") from e
        logger.info(f"讀取到 {len(records)} 筆預訂資料")
        return records

    def save_reservation(self, reservation):
        """新增或取代單筆訂位，原子性重寫整個檔案"""
        with self.lock:
            try:
                rows = [row for row in self._read_records() if str(row["id"]) != reservation.id]
                rows.append(reservation.to_dict())
                rows.sort(key=lambda row: int(row["id"]))
                self._write_records(rows)
            except (OSError, ValueError, KeyError) as e:
                logger.error(f"儲存預訂資料失敗 {reservation.id}: {e}")
                raise StorageUnavailable(f"Cannot save reservation: {e}") from e
        logger.info(f"預訂資料已儲存: {reservation.id} ({reservation.status.value})")

    def save_all(self, reservations):
        with self.lock:
            try:
                self._write_records([r.to_dict() for r in reservations])
            except OSError as e:
                logger.error(f"批次儲存預訂失敗: {e}")
                raise StorageUnavailable(f"Cannot save reservations: {e}") from e

    # ---------- 編號計數器 ----------
    def next_id(self):
        """先寫入遞增後的計數器，再回傳新編號"""
        with self.lock:
            try:
                last = 0
                if self.counter_path.exists():
                    raw = self.counter_path.read_text(encoding="utf-8").strip()
                    last = int(raw) if raw else 0
                issued = last + 1
                self._atomic_write(self.counter_path, f"{issued}\n")
            except (OSError, ValueError) as e:
                logger.error(f"遞增計數器失敗: {e}")
                raise StorageUnavailable(f"Cannot issue reservation id: {e}") from e
        return str(issued)

    # ---------- 結帳紀錄 ----------
    def append_settlement(self, entry):
        """每筆訂單只記一次；重試時已存在的紀錄直接略過"""
        with self.lock:
            try:
                if any(str(e.get("ID")) == str(entry["ID"]) for e in self._read_settlements()):
                    logger.info(f"結帳紀錄已存在，略過: {entry['ID']}")
                    return
                with open(self.settlements_path, "a", encoding="utf-8") as fh:
                    fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
                    fh.flush()
                    os.fsync(fh.fileno())
            except (OSError, ValueError) as e:
                logger.error(f"保存結帳紀錄失敗 {entry.get('ID')}: {e}")
                raise StorageUnavailable(f"Cannot write settlement log: {e}") from e
        logger.info(f"結帳紀錄已保存: {entry.get('ID')} ({entry.get('Payment Method')})")

    def _read_settlements(self):
        if not self.settlements_path.exists():
            return []
        with open(self.settlements_path, encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]

    def list_settlements(self):
        with self.lock:
            try:
                return self._read_settlements()
            except (OSError, ValueError) as e:
                logger.error(f"讀取結帳紀錄失敗: {e}")
                raise StorageUnavailable(f"Cannot read settlement log: {e}") from e
