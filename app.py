# ======================================
# app.py - Reserve Eat 訂位帳本 API
# ======================================

from flask import Blueprint, Flask, current_app, request, jsonify, send_file
from flask_cors import CORS
from allocator import CapacityAllocator
from config import Settings
from errors import InvalidRequest, ReservationError, StorageUnavailable
from ledger import ReservationLedger
from reservation import DATE_FORMAT, TIME_FORMAT
import io, csv, jwt
from datetime import datetime, timedelta
from functools import wraps
import logging

# 設定日誌
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0-ledger"

bp = Blueprint("reserve_eat", __name__)


# ---------- 儲存層初始化 ----------
# 根據環境變數選擇儲存後端 (預設使用本機檔案)
def build_store(app, settings):
    backend = settings.store_backend
    if backend == "file":
        from file_store import FileStore
        return FileStore(settings.data_dir)
    if backend == "sql":
        from sql_store import SqlStore
        app.config["SQLALCHEMY_DATABASE_URI"] = settings.database_url
        return SqlStore(app)
    if backend == "dynamodb":
        from ddb_store import DynamoDBStore
        return DynamoDBStore(
            reservations_table=settings.reservations_table,
            counters_table=settings.counters_table,
            settlements_table=settings.settlements_table,
        )
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def create_app(settings=None, store=None):
    settings = settings or Settings.from_env()
    app = Flask(__name__)
    CORS(app)
    app.config["SETTINGS"] = settings

    if store is None:
        store = build_store(app, settings)
    logger.info(f"Using {type(store).__name__} as storage backend")

    ledger_kwargs = {
        "allocator": CapacityAllocator(settings.pool_size, settings.count_settled),
        "service_duration": settings.service_duration,
        "tz": settings.tz,
    }
    try:
        ledger = ReservationLedger.load(store, **ledger_kwargs)
    except StorageUnavailable as e:
        if not settings.allow_empty_on_load_failure:
            raise
        logger.error(f"Could not load reservations, starting with an empty ledger: {e}")
        ledger = ReservationLedger(store, **ledger_kwargs)

    app.extensions["ledger"] = ledger
    app.register_blueprint(bp)
    app.register_error_handler(ReservationError, _handle_reservation_error)
    return app


def _handle_reservation_error(e):
    return jsonify(e.to_dict()), e.status_code


def _ledger():
    return current_app.extensions["ledger"]


def _settings():
    return current_app.config["SETTINGS"]


# ---------- 請求參數解析 ----------
def _payload():
    return request.get_json(force=True, silent=True) or {}


def _parse_date(value):
    try:
        return datetime.strptime(str(value).strip(), DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise InvalidRequest("date must be YYYY-MM-DD")


def _parse_time(value):
    try:
        return datetime.strptime(str(value).strip(), TIME_FORMAT).time()
    except (TypeError, ValueError):
        raise InvalidRequest("time must be HH:MM")


def _parse_tables(value):
    # 只接受整數或純數字字串；2.9、True 之類不做轉換
    if isinstance(value, bool):
        raise InvalidRequest("tables must be a whole number")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise InvalidRequest("tables must be a whole number")


def _future_date(value):
    day = _parse_date(value)
    if day < datetime.now(_settings().tz).date():
        raise InvalidRequest("date cannot be in the past")
    return day


def _login_id(value):
    login_id = str(value or "").strip().lower()
    if not login_id:
        raise InvalidRequest("login_id is required")
    return login_id


def _reservation_id(payload):
    reservation_id = str(payload.get("reservation_id") or "").strip()
    if not reservation_id:
        raise InvalidRequest("reservation_id required")
    return reservation_id


# ---------- Token 驗證裝飾器 ----------
def require_admin_token(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        settings = _settings()
        # 如果驗證被停用，直接執行函數
        if not settings.enable_admin_auth:
            return f(*args, **kwargs)

        token = request.headers.get('Authorization')
        if not token:
            return jsonify({'success': False, 'message': 'No token provided'}), 401

        try:
            token = token.replace('Bearer ', '')
            payload = jwt.decode(token, settings.jwt_secret, algorithms=['HS256'])
            if payload.get('username') != settings.admin_username:
                return jsonify({'success': False, 'message': 'Invalid token'}), 401
        except jwt.ExpiredSignatureError:
            return jsonify({'success': False, 'message': 'Token expired'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'success': False, 'message': 'Invalid token'}), 401

        return f(*args, **kwargs)
    return decorated


# ---------- 版本檢查 API ----------
@bp.route("/api/version")
def get_version():
    store = _ledger().store
    return jsonify(
        app_version=APP_VERSION,
        store_type=type(store).__name__,
        store_version=getattr(store, 'VERSION', 'unknown'),
    )


# ---------- 健康檢查 ----------
@bp.get("/health")
def health():
    return jsonify(ok=True)


# ---------- 儲存連線測試 ----------
@bp.route('/test-connection')
def test_connection():
    store = _ledger().store
    store_type = type(store).__name__
    if store.test_connection():
        return jsonify({'status': 'success', 'message': f'{store_type} connection OK', 'store_type': store_type})
    return jsonify({'status': 'error', 'message': f'{store_type} connection failed', 'store_type': store_type}), 500


# ---------- Admin 登入 API ----------
@bp.post("/api/admin/login")
def admin_login():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'success': False, 'message': 'No data provided'}), 400

    settings = _settings()
    if data.get('username') == settings.admin_username and data.get('password') == settings.admin_password:
        # 生成 JWT token (24小時有效)
        payload = {
            'username': settings.admin_username,
            'exp': datetime.now(settings.tz) + timedelta(hours=24)
        }
        token = jwt.encode(payload, settings.jwt_secret, algorithm='HS256')
        return jsonify({'success': True, 'token': token, 'message': 'Login successful'})

    return jsonify({'success': False, 'message': 'Invalid credentials'}), 401


@bp.get("/api/admin/verify")
@require_admin_token
def admin_verify():
    return jsonify({'success': True, 'message': 'Token valid'})


# ---------- API：可用性 ----------
@bp.get("/api/availability")
def api_availability():
    day = _parse_date(request.args.get("date"))
    start = _parse_time(request.args.get("time"))
    ledger = _ledger()
    free = ledger.available(day, start)
    return jsonify(
        date=day.strftime(DATE_FORMAT),
        start=start.strftime(TIME_FORMAT),
        total=ledger.allocator.pool_size,
        available=max(free, 0),
    )


# ---------- API：建立預約 ----------
@bp.post("/api/reserve")
def reserve():
    payload = _payload()
    login_id = _login_id(payload.get("login_id"))
    tables = _parse_tables(payload.get("tables", 1))
    day = _future_date(payload.get("date"))
    start = _parse_time(payload.get("time"))
    name = str(payload.get("name", "")).strip() or "Guest"
    contact = str(payload.get("contact", "")).strip()

    reservation = _ledger().book(login_id, name, contact, tables, day, start)
    return jsonify(success=True, message="Reservation received, pending approval.",
                   reservation=reservation.to_dict()), 201


# ---------- API：修改預約 ----------
@bp.post("/api/reservations/<reservation_id>/edit")
def edit_reservation(reservation_id):
    payload = _payload()
    login_id = _login_id(payload.get("login_id"))
    tables = _parse_tables(payload.get("tables"))
    day = _future_date(payload.get("date"))
    start = _parse_time(payload.get("time"))

    reservation = _ledger().edit(reservation_id, login_id, tables, day, start)
    return jsonify(success=True, message="Reservation updated.", reservation=reservation.to_dict())


# ---------- API：取消預約 ----------
@bp.post("/api/cancel")
def cancel():
    payload = _payload()
    reservation = _ledger().cancel(_reservation_id(payload), _login_id(payload.get("login_id")))
    return jsonify(success=True, reservation=reservation.to_dict())


# ---------- API：我的預約 ----------
@bp.get("/api/my/reservations")
def my_reservations():
    ledger = _ledger()
    login_id = _login_id(request.args.get("login_id"))
    status = request.args.get("status")
    if status:
        records = ledger.list_by_owner_and_status(login_id, status)
    else:
        records = ledger.list_by_owner(login_id)
    return jsonify(data=[r.to_dict() for r in records], total=len(records))


# ---------- API：查詢預約 (Admin) ----------
@bp.get("/api/reservations")
@require_admin_token
def list_reservations():
    ledger = _ledger()
    status = request.args.get("status")
    login_id = request.args.get("login_id")
    page = max(1, request.args.get("page", default=1, type=int))
    size = min(100, max(1, request.args.get("page_size", default=50, type=int)))

    if login_id and status:
        records = ledger.list_by_owner_and_status(login_id.strip().lower(), status)
    elif login_id:
        records = ledger.list_by_owner(login_id.strip().lower())
    elif status:
        records = ledger.list_by_status(status)
    else:
        records = ledger.list_all()

    # 排序（最新的在前）
    records.reverse()
    total = len(records)
    start = (page - 1) * size
    data = [r.to_dict() for r in records[start:start + size]]
    return jsonify({"data": data, "total": total, "page": page, "page_size": size})


@bp.get("/api/reservations/<reservation_id>/status")
@require_admin_token
def reservation_status(reservation_id):
    status = _ledger().status_of(reservation_id)
    if status is None:
        return jsonify(success=False, message="Reservation not found"), 404
    return jsonify(success=True, reservation_id=reservation_id, status=status.value)


# ---------- API：核准 / 拒絕 / 結帳 ----------
@bp.post("/api/admin/approve")
@require_admin_token
def approve():
    reservation = _ledger().approve(_reservation_id(_payload()))
    return jsonify(success=True, reservation=reservation.to_dict())


@bp.post("/api/admin/reject")
@require_admin_token
def reject():
    reservation = _ledger().reject(_reservation_id(_payload()))
    return jsonify(success=True, reservation=reservation.to_dict())


@bp.post("/api/admin/settle")
@require_admin_token
def settle():
    payload = _payload()
    reservation = _ledger().settle(_reservation_id(payload), payload.get("payment_method"))
    return jsonify(success=True, message="Payment recorded.", reservation=reservation.to_dict())


@bp.get("/api/admin/settlements")
@require_admin_token
def list_settlements():
    entries = _ledger().store.list_settlements()
    return jsonify(data=entries, total=len(entries))


# ---------- 匯出 CSV ----------
@bp.get("/api/reservations.csv")
@require_admin_token
def export_csv():
    columns = ["id", "owner", "name", "contact", "tables", "date", "start", "end",
               "status", "payment_method", "created_at"]
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(columns)

    for r in _ledger().list_all():
        row = r.to_dict()
        writer.writerow([row.get(c) or "" for c in columns])

    mem = io.BytesIO(out.getvalue().encode("utf-8"))
    mem.seek(0)
    return send_file(mem, mimetype="text/csv", as_attachment=True, download_name="reservations.csv")


# ---------- 啟動 ----------
if __name__ == "__main__":
    app = create_app()
    settings = app.config["SETTINGS"]
    print(f"[INFO] Admin authentication: {'ENABLED' if settings.enable_admin_auth else 'DISABLED'}")
    try:
        app.run(host="0.0.0.0", port=settings.port, debug=False)
    finally:
        app.extensions["ledger"].flush()
