# orders.py
"""
Ciclo de vida de las órdenes.

    pendiente -> en_proceso -> lista_para_entrega -> entregada        (mesa / pickup)
                                                 -> en_camino -> entregada  (delivery)
    entregada + pagada  -> pagada
    cualquiera activa   -> cancelada

`is_paid` es independiente del estado: se puede cobrar en cualquier momento,
pero el estado `pagada` sólo se alcanza después de `entregada` (o con el
cobro directo de una orden que ya estaba lista / en camino).
"""
import logging
import math
import random
import re
from datetime import datetime

from extensions import db
from errors import ValidationError
from models import Order, OrderItem, OrderStatus, OrderType, PaymentMethod
from timezones import utc_now, to_local, local_midnight_utc, parse_timestamp
import sync

logger = logging.getLogger(__name__)

PAGADA = OrderStatus.PAGADA.value
ENTREGADA = OrderStatus.ENTREGADA.value
CANCELADA = OrderStatus.CANCELADA.value
PENDIENTE = OrderStatus.PENDIENTE.value
EN_PROCESO = OrderStatus.EN_PROCESO.value
LISTA = OrderStatus.LISTA_PARA_ENTREGA.value
EN_CAMINO = OrderStatus.EN_CAMINO.value

# `archived` no se escribe: el historial es la bandera `Order.archived`
STATUSES = {s.value for s in OrderStatus if s is not OrderStatus.ARCHIVED}
ORDER_TYPES = {t.value for t in OrderType}
PAYMENT_METHODS = {m.value for m in PaymentMethod}

# desde estos estados el cobro directo deja la orden en `pagada`
PAYABLE_FROM = (ENTREGADA, LISTA, EN_CAMINO)
ARCHIVABLE = (PAGADA, CANCELADA)
KITCHEN_COMPLETED = (LISTA, EN_CAMINO, ENTREGADA, PAGADA)
CLOSED = (ENTREGADA, CANCELADA, PAGADA)

MESERO = ("mesero1", "Mesero")
REPARTIDOR = ("delivery1", "Repartidor")

TABLE_RE = re.compile(r"^\d{1,2}$")
REFERENCE_RE = re.compile(r"^\d{4}$")


def compute_total(items):
    return round(sum(float(i.price) * int(i.quantity) for i in items), 2)


def creator_for(role, order_type):
    """Quién queda como dueño de una orden nueva, según el rol que la crea."""
    if role == "delivery":
        return REPARTIDOR
    if role == "jefe" and order_type == OrderType.DELIVERY.value:
        return REPARTIDOR
    return MESERO


def build_items(raw_items):
    """
    Convierte el carrito del cliente en líneas de la orden.
    Las líneas con cantidad 0 se descartan.
    """
    items = []
    if raw_items is not None and not isinstance(raw_items, list):
        raise ValidationError("Producto inválido en la orden.")
    for n, raw in enumerate(raw_items or []):
        if not isinstance(raw, dict):
            raise ValidationError("Producto inválido en la orden.")
        try:
            quantity = int(raw.get("quantity", 1))
            price = float(raw.get("price"))
        except (TypeError, ValueError):
            raise ValidationError("Producto inválido en la orden.")
        if quantity <= 0:
            continue
        if not math.isfinite(price) or price < 0:
            raise ValidationError("Precio inválido.")
        name = (raw.get("name") or "").strip()
        menu_item_id = str(raw.get("id") or raw.get("menuItemId") or "").strip()
        if not name or not menu_item_id:
            raise ValidationError("Producto inválido en la orden.")
        items.append(OrderItem(
            line=n,
            menu_item_id=menu_item_id,
            name=name,
            price=price,
            rank=int(raw.get("order") or 0),
            quantity=quantity,
        ))
    return items


def validate_location(order_type, table, customer_name):
    if order_type not in ORDER_TYPES:
        raise ValidationError("Tipo de orden inválido.")
    if order_type == OrderType.MESA.value:
        if not table:
            raise ValidationError("Por favor, ingresa el número de mesa.")
        if not TABLE_RE.match(table) or not (1 <= int(table) <= 99):
            raise ValidationError("Número de mesa inválido (1 a 99).")
    elif not (customer_name or "").strip():
        raise ValidationError("Por favor, ingresa el nombre del cliente.")


def validate_payment(method, reference):
    """Devuelve (método, referencia) normalizados."""
    if method is None:
        return None, None
    method = str(method).strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError("Método de pago inválido.")
    if method in (PaymentMethod.PAGO_MOVIL.value, PaymentMethod.TRANSFERENCIA.value):
        reference = str(reference or "").strip()
        if not REFERENCE_RE.match(reference):
            raise ValidationError("La referencia debe tener los últimos 4 dígitos.")
        return method, reference
    return method, None


def _clean_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _as_datetime(value, default):
    if value is None:
        return default
    return parse_timestamp(value) or default


class OrderManager:
    def __init__(self, channel, notifier, tz, clock=utc_now):
        self.channel = channel
        self.notifier = notifier
        self.tz = tz
        self.clock = clock

    # ---------- LECTURA ----------
    def get(self, order_id):
        order = db.session.get(Order, str(order_id))
        if order is None or order.archived:
            return None
        return order

    def active_orders(self):
        return (
            Order.query
            .filter_by(archived=False)
            .order_by(Order.created_at.asc(), Order.id.asc())
            .all()
        )

    def archived_orders(self):
        return Order.query.filter_by(archived=True).order_by(Order.last_updated.desc()).all()

    def get_orders_for(self, owner_id):
        """Órdenes de un mesero o repartidor (mismo espacio de ids)."""
        return [o for o in self.active_orders() if o.waiter_id == owner_id]

    def owner_view(self, owner_id):
        mine = sorted(
            self.get_orders_for(owner_id),
            key=lambda o: o.last_updated or datetime.min,
            reverse=True,
        )
        return {
            "pending": [o for o in mine if o.status not in CLOSED],
            "deliveredUnpaid": [o for o in mine if o.status == ENTREGADA and not o.is_paid],
            "paid": [o for o in mine if o.status == PAGADA],
            "cancelled": [o for o in mine if o.status == CANCELADA],
        }

    def kitchen_view(self):
        orders = self.active_orders()
        return {
            "received": [o for o in orders if o.status == PENDIENTE],
            "inProcess": [o for o in orders if o.status == EN_PROCESO],
            "completed": [o for o in orders if o.status in KITCHEN_COMPLETED],
        }

    def payload(self):
        return [o.to_dict() for o in self.active_orders()]

    def archived_payload(self):
        return [o.to_dict() for o in self.archived_orders()]

    # ---------- ESCRITURA ----------
    def _new_id(self):
        while True:
            candidate = str(random.randint(0, 999999))
            if db.session.get(Order, candidate) is None:
                return candidate

    def _save(self):
        self.channel.commit(sync.ORDERS, self.payload())

    def add_order(self, draft, actor_role=None):
        order_type = draft.get("type")
        table = _clean_text(draft.get("table")) if order_type == OrderType.MESA.value else None
        customer = _clean_text(draft.get("customerName")) if order_type != OrderType.MESA.value else None

        items = build_items(draft.get("items"))
        if not items:
            raise ValidationError("La orden está vacía.")
        validate_location(order_type, table, customer)

        # cobrada al crear: entra igual a la cola de cocina
        is_paid = draft.get("status") == PAGADA or bool(draft.get("isPaid"))
        method, reference = validate_payment(draft.get("paymentMethod"), draft.get("paymentReference"))

        waiter_id, waiter_name = creator_for(actor_role, order_type)
        now = self.clock()
        order = Order(
            id=self._new_id(),
            type=order_type,
            table=table,
            customer_name=customer,
            items=items,
            total=compute_total(items),
            status=PENDIENTE,
            is_paid=is_paid,
            notes=_clean_text(draft.get("notes")),
            created_at=now,
            last_updated=now,
            waiter_id=draft.get("waiterId") or waiter_id,
            waiter_name=draft.get("waiterName") or waiter_name,
            payment_method=method,
            payment_reference=reference,
            archived=False,
        )
        db.session.add(order)
        db.session.flush()

        if is_paid:
            self.notifier.payment_received(order)
        self.notifier.order_created(order, actor_role)
        self._save()
        logger.info("➕ orden %s (%s) creada: total %.2f, pagada=%s", order.id, order.type, order.total, order.is_paid)
        return order

    def _apply_fields(self, order, updates, now):
        touches_location = any(k in updates for k in ("type", "table", "customerName", "items"))
        if "type" in updates:
            order.type = updates["type"]
        if "table" in updates or "type" in updates:
            order.table = _clean_text(updates.get("table", order.table))
        if "customerName" in updates or "type" in updates:
            order.customer_name = _clean_text(updates.get("customerName", order.customer_name))
        if order.type == OrderType.MESA.value:
            order.customer_name = None
        else:
            order.table = None

        if "items" in updates:
            items = build_items(updates["items"])
            if not items:
                raise ValidationError("La orden está vacía.")
            order.items = items
        if touches_location:
            validate_location(order.type, order.table, order.customer_name)

        if "notes" in updates:
            order.notes = _clean_text(updates["notes"])
        if "waiterId" in updates:
            order.waiter_id = updates["waiterId"]
        if "waiterName" in updates:
            order.waiter_name = updates["waiterName"]
        if "paymentMethod" in updates:
            order.payment_method, order.payment_reference = validate_payment(
                updates["paymentMethod"], updates.get("paymentReference"))
        if "acceptedAt" in updates:
            order.accepted_at = _as_datetime(updates["acceptedAt"], now)
        if "deliveredAt" in updates:
            order.delivered_at = _as_datetime(updates["deliveredAt"], now)
        if "isPaid" in updates:
            order.is_paid = bool(updates["isPaid"])
        if updates.get("status") is not None:
            order.status = updates["status"]

    def update_order(self, order_id, updates, actor_role=None):
        """
        Aplica un cambio parcial. Si la orden no existe no hace nada (devuelve None).
        """
        order = self.get(order_id)
        if order is None:
            logger.info("orden %s no encontrada; se ignora la actualización", order_id)
            return None

        prior_status = order.status
        prior_paid = bool(order.is_paid)
        now = self.clock()

        new_status = updates.get("status")
        if new_status is not None and new_status not in STATUSES:
            raise ValidationError("Estado inválido.")

        try:
            self._apply_fields(order, updates, now)
        except ValidationError:
            db.session.rollback()
            raise

        order.total = compute_total(order.items)
        order.last_updated = now

        # 1. cobrada en esta actualización
        if not prior_paid and order.is_paid:
            self.notifier.payment_received(order)

        # 2. cobrada y entregada
        if order.is_paid and order.status == ENTREGADA:
            order.status = PAGADA

        # 3. se entrega una orden ya cobrada
        if new_status == ENTREGADA and order.is_paid:
            order.status = PAGADA

        # 4. `pagada` directo: sólo si ya estaba lista / en camino / entregada
        if new_status == PAGADA:
            order.is_paid = True
            if prior_status in PAYABLE_FROM:
                order.status = PAGADA
            else:
                order.status = prior_status

        # 5. lista para entregar
        if order.status == LISTA and prior_status != LISTA:
            self.notifier.order_ready(order)

        if new_status == EN_PROCESO and prior_status != EN_PROCESO and order.accepted_at is None:
            order.accepted_at = now
        if new_status == ENTREGADA and order.delivered_at is None:
            order.delivered_at = now

        self._save()
        logger.info("✏️ orden %s: %s -> %s, pagada=%s", order.id, prior_status, order.status, order.is_paid)
        return order

    def pay_order(self, order_id, payment_method, payment_reference=None, actor_role=None):
        method, reference = validate_payment(payment_method, payment_reference)
        if method is None:
            raise ValidationError("Selecciona un método de pago.")
        return self.update_order(order_id, {
            "isPaid": True,
            "paymentMethod": method,
            "paymentReference": reference,
        }, actor_role=actor_role)

    def cancel_order(self, order_id, actor_role=None):
        return self.update_order(order_id, {"status": CANCELADA}, actor_role=actor_role)

    # ---------- CIERRES ----------
    def archive_todays_orders(self):
        """Cierre del día: pagadas y canceladas de hoy pasan al historial."""
        today = to_local(self.clock(), self.tz).date()
        midnight = local_midnight_utc(today, self.tz)

        to_archive = (
            Order.query
            .filter(
                Order.archived.is_(False),
                Order.status.in_(ARCHIVABLE),
                Order.last_updated.isnot(None),
                Order.last_updated >= midnight,
            )
            .all()
        )
        for order in to_archive:
            order.archived = True

        db.session.flush()
        self.channel.publish(sync.ARCHIVED_ORDERS, self.archived_payload(), commit=False)
        self._save()
        logger.info("📦 cierre del día: %s órdenes archivadas", len(to_archive))
        return len(to_archive)

    def _delete_active(self, *criteria):
        doomed = Order.query.filter(Order.archived.is_(False), *criteria).all()
        for order in doomed:
            db.session.delete(order)
        self._save()
        return len(doomed)

    def clear_waiter_sold_orders(self, owner_id):
        n = self._delete_active(Order.waiter_id == owner_id, Order.status == PAGADA)
        logger.info("🧹 %s: %s ventas eliminadas del turno", owner_id, n)
        return n

    def clear_delivery_sold_orders(self, owner_id):
        n = self._delete_active(Order.waiter_id == owner_id, Order.status == PAGADA)
        logger.info("🧹 %s: %s entregas eliminadas del turno", owner_id, n)
        return n

    def clear_waiter_cancelled_orders(self, owner_id):
        n = self._delete_active(Order.waiter_id == owner_id, Order.status == CANCELADA)
        logger.info("🧹 %s: %s canceladas eliminadas", owner_id, n)
        return n

    def clear_kitchen_completed_orders(self):
        n = self._delete_active(Order.status.in_(KITCHEN_COMPLETED))
        logger.info("🧹 cocina: %s pedidos preparados eliminados", n)
        return n
