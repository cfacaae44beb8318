# app.py
import logging
from zoneinfo import ZoneInfo

from flask import Blueprint, Flask, current_app, jsonify, request, session
from flask_login import (
    login_required,
    current_user,
    login_user,
    logout_user
)
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from extensions import db, login_manager, cors
from errors import PosError, ForbiddenError, ValidationError
from accounts import AccountManager
from menu import MenuManager
from notifications import Notifier
from orders import OrderManager, creator_for
from reporting import SalesReport
from sync import SyncChannel
from timezones import utc_now

bp = Blueprint("pos", __name__)


class PosServices:
    """Los repositorios de la app, armados una sola vez por create_app."""

    def __init__(self, tz, week_starts_on=0, clock=utc_now):
        self.channel = SyncChannel()
        self.notifier = Notifier(self.channel)
        self.orders = OrderManager(self.channel, self.notifier, tz, clock=clock)
        self.menu = MenuManager(self.channel)
        self.reports = SalesReport(self.channel, tz, week_starts_on=week_starts_on, clock=clock)
        self.accounts = AccountManager(self.channel, self.notifier, clock=clock)


def pos() -> PosServices:
    return current_app.extensions["pos"]


def create_app(config_overrides=None):
    app = Flask(__name__)

    # ---------- CONFIGURACIÓN ----------
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # ---------- INICIALIZAR EXTENSIONES ----------
    db.init_app(app)
    login_manager.init_app(app)
    cors.init_app(app, supports_credentials=True)

    app.extensions["pos"] = PosServices(
        ZoneInfo(app.config["POS_TIMEZONE"]),
        week_starts_on=app.config["WEEK_STARTS_ON"],
        clock=app.config.get("POS_CLOCK") or utc_now,
    )
    app.register_blueprint(bp)
    register_error_handlers(app)

    # ---------- SEED (Render no entra a __main__) ----------
    with app.app_context():
        db.create_all()
        app.extensions["pos"].accounts.seed_passwords(app.config["DEFAULT_PASSWORDS"])
        app.extensions["pos"].menu.seed_default_menu()

    return app


# ---------- LOGIN MANAGER ----------
@login_manager.user_loader
def load_user(user_id):
    return pos().accounts.load(user_id)


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Inicia sesión para continuar."}), 401


def current_role():
    if not current_user.is_authenticated:
        return None
    return (current_user.role or "").lower()


def require_role(*roles):
    if current_role() not in roles:
        raise ForbiddenError("No tienes permiso para esta acción.")


def payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Solicitud inválida.")
    return data


# ---------- ERRORES ----------
def register_error_handlers(app):
    @app.errorhandler(PosError)
    def handle_pos_error(err):
        db.session.rollback()
        pos().channel.discard_pending()
        if err.status_code >= 500:
            app.logger.error("❌ %s", err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(err):
        db.session.rollback()
        pos().channel.discard_pending()
        app.logger.exception("❌ error de base de datos")
        return jsonify({"error": "No se pudo completar la operación. Inténtalo de nuevo."}), 500


# ---------- LOGIN ----------
@bp.route("/login", methods=["POST"])
def login():
    data = payload()
    role = (data.get("role") or "").strip().lower()
    account = pos().accounts.authenticate(role, data.get("password", ""))
    login_user(account)
    session.pop("broadcast_seen", None)
    current_app.logger.info("🔓 sesión iniciada: %s", role)
    return jsonify({"role": account.role})


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@bp.route("/me")
@login_required
def me():
    return jsonify({
        "role": current_role(),
        "pollSeconds": current_app.config["SYNC_POLL_SECONDS"],
    })


# ---------- MENÚ ----------
@bp.route("/api/menu")
@login_required
def menu_list():
    include_disabled = request.args.get("all") == "1" and current_role() == "jefe"
    items = pos().menu.list_menu(include_disabled=include_disabled)
    return jsonify({"menuItems": [i.to_dict() for i in items]})


@bp.route("/api/menu", methods=["POST"])
@login_required
def menu_add():
    require_role("jefe")
    data = payload()
    item = pos().menu.add_menu_item(data.get("name"), data.get("price"))
    return jsonify(item.to_dict()), 201


@bp.route("/api/menu/<item_id>", methods=["PUT"])
@login_required
def menu_update(item_id):
    require_role("jefe")
    item = pos().menu.update_menu_item(item_id, payload())
    return jsonify(item.to_dict())


@bp.route("/api/menu/<item_id>", methods=["DELETE"])
@login_required
def menu_delete(item_id):
    require_role("jefe")
    pos().menu.delete_menu_item(item_id)
    return jsonify({"ok": True})


@bp.route("/api/menu/<item_id>/move", methods=["POST"])
@login_required
def menu_move(item_id):
    require_role("jefe")
    moved = pos().menu.move_menu_item(item_id, payload().get("direction"))
    return jsonify({"moved": moved, "menuItems": pos().menu.payload()})


@bp.route("/api/menu/<item_id>/toggle", methods=["POST"])
@login_required
def menu_toggle(item_id):
    require_role("jefe")
    item = pos().menu.toggle_menu_item_availability(item_id)
    return jsonify(item.to_dict())


# ---------- ÓRDENES ----------
def _serialize_view(view):
    return {k: [o.to_dict() for o in v] for k, v in view.items()}


@bp.route("/api/orders")
@login_required
def orders_list():
    role = current_role()
    manager = pos().orders
    if role in ("mesero", "delivery"):
        owner_id = creator_for(role, None)[0]
        return jsonify({
            "orders": [o.to_dict() for o in manager.get_orders_for(owner_id)],
            "views": _serialize_view(manager.owner_view(owner_id)),
        })
    if role == "cocina":
        return jsonify({
            "orders": manager.payload(),
            "views": _serialize_view(manager.kitchen_view()),
        })
    return jsonify({"orders": manager.payload()})


@bp.route("/api/orders", methods=["POST"])
@login_required
def orders_create():
    require_role("mesero", "delivery", "jefe")
    order = pos().orders.add_order(payload(), actor_role=current_role())
    return jsonify(order.to_dict()), 201


@bp.route("/api/orders/<order_id>", methods=["PATCH"])
@login_required
def orders_update(order_id):
    order = pos().orders.update_order(order_id, payload(), actor_role=current_role())
    # orden inexistente: no-op silencioso
    return jsonify(order.to_dict() if order else None)


@bp.route("/api/orders/<order_id>/cancel", methods=["POST"])
@login_required
def orders_cancel(order_id):
    order = pos().orders.cancel_order(order_id, actor_role=current_role())
    return jsonify(order.to_dict() if order else None)


@bp.route("/api/orders/<order_id>/pay", methods=["POST"])
@login_required
def orders_pay(order_id):
    require_role("mesero", "delivery", "jefe")
    data = payload()
    order = pos().orders.pay_order(
        order_id,
        data.get("paymentMethod"),
        data.get("paymentReference"),
        actor_role=current_role(),
    )
    return jsonify(order.to_dict() if order else None)


@bp.route("/api/orders/archive-today", methods=["POST"])
@login_required
def orders_archive_today():
    require_role("jefe")
    return jsonify({"archived": pos().orders.archive_todays_orders()})


@bp.route("/api/service/finalize", methods=["POST"])
@login_required
def service_finalize():
    """Fin de turno: cada rol confirma con su propia contraseña."""
    role = current_role()
    require_role("mesero", "delivery", "cocina")
    pos().accounts.verify_role_password(role, payload().get("password"))

    manager = pos().orders
    if role == "cocina":
        removed = manager.clear_kitchen_completed_orders()
    elif role == "delivery":
        removed = manager.clear_delivery_sold_orders(creator_for(role, None)[0])
    else:
        removed = manager.clear_waiter_sold_orders(creator_for(role, None)[0])
    return jsonify({"removed": removed})


@bp.route("/api/orders/clear-cancelled", methods=["POST"])
@login_required
def orders_clear_cancelled():
    role = current_role()
    require_role("mesero", "delivery")
    removed = pos().orders.clear_waiter_cancelled_orders(creator_for(role, None)[0])
    return jsonify({"removed": removed})


# ---------- JEFE: REPORTE ----------
def _check_pin(pin):
    if str(pin or "") != current_app.config["CLEAR_HISTORY_PIN"]:
        raise ValidationError("PIN Incorrecto")


@bp.route("/api/reports/sales")
@login_required
def reports_sales():
    require_role("jefe")
    return jsonify(pos().reports.summary())


@bp.route("/api/reports/archive/clear", methods=["POST"])
@login_required
def reports_clear_archive():
    require_role("jefe")
    _check_pin(payload().get("pin"))
    return jsonify({"removed": pos().reports.clear_archived_orders()})


@bp.route("/api/reports/archive/clear-month", methods=["POST"])
@login_required
def reports_clear_month():
    require_role("jefe")
    data = payload()
    _check_pin(data.get("pin"))
    return jsonify({"removed": pos().reports.clear_archived_orders_by_month(data.get("month"))})


# ---------- JEFE: CONTRASEÑAS Y ANUNCIOS ----------
@bp.route("/api/passwords", methods=["POST"])
@login_required
def passwords_change():
    require_role("jefe")
    data = payload()
    pos().accounts.change_password(
        (data.get("role") or "").strip().lower(),
        data.get("newPassword"),
        data.get("confirmPassword"),
        data.get("ownerPassword"),
    )
    return jsonify({"ok": True})


@bp.route("/api/broadcast", methods=["POST"])
@login_required
def broadcast_send():
    require_role("jefe")
    current = pos().accounts.broadcast(payload().get("message"))
    return jsonify(current.to_dict()), 201


@bp.route("/api/broadcast")
@login_required
def broadcast_pending():
    current = pos().accounts.pending_broadcast(current_role(), session.get("broadcast_seen"))
    return jsonify({"broadcast": current.to_dict() if current else None})


@bp.route("/api/broadcast/ack", methods=["POST"])
@login_required
def broadcast_ack():
    timestamp = payload().get("timestamp")
    if timestamp is None:
        current = pos().accounts.current_broadcast()
        timestamp = current.timestamp if current else None
    session["broadcast_seen"] = timestamp
    return jsonify({"ok": True})


# ---------- SINCRONIZACIÓN ----------
@bp.route("/api/sync")
@login_required
def sync_events():
    try:
        since = int(request.args.get("since", "0"))
    except ValueError:
        raise ValidationError("Cursor inválido.")
    channel = pos().channel
    events = channel.events_since(since)
    cursor = events[-1]["id"] if events else max(since, channel.latest_cursor())
    return jsonify({
        "cursor": cursor,
        "events": events,
        "pollSeconds": current_app.config["SYNC_POLL_SECONDS"],
    })


@bp.route("/api/snapshot")
@login_required
def sync_snapshot():
    services = pos()
    cursor = services.channel.latest_cursor()
    current = services.accounts.current_broadcast()
    return jsonify({
        "cursor": cursor,
        "orders": services.orders.payload(),
        "archivedOrders": services.orders.archived_payload() if current_role() == "jefe" else [],
        "menuItems": services.menu.payload(),
        "broadcast": current.to_dict() if current else None,
    })


# ---------- MAIN ----------
if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=8000, debug=False)
