import enum

from extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from timezones import utc_now


class Role(str, enum.Enum):
    MESERO = "mesero"
    COCINA = "cocina"
    DELIVERY = "delivery"
    JEFE = "jefe"


ROLES = [r.value for r in Role]


class OrderType(str, enum.Enum):
    MESA = "mesa"
    DELIVERY = "delivery"
    PICKUP = "pickup"


class OrderStatus(str, enum.Enum):
    PENDIENTE = "pendiente"
    EN_PROCESO = "en_proceso"
    LISTA_PARA_ENTREGA = "lista_para_entrega"
    EN_CAMINO = "en_camino"
    ENTREGADA = "entregada"
    PAGADA = "pagada"
    CANCELADA = "cancelada"
    ARCHIVED = "archived"


class PaymentMethod(str, enum.Enum):
    PAGO_MOVIL = "pago_movil"
    TRANSFERENCIA = "transferencia"
    EFECTIVO = "efectivo"
    DIVISAS = "divisas"
    NFC = "nfc"


def _iso(dt):
    return dt.isoformat() if dt else None


class RoleAccount(UserMixin, db.Model):
    """Una cuenta por rol. No hay usuarios individuales."""
    role = db.Column(db.String(20), primary_key=True)
    password_hash = db.Column(db.String(200), nullable=False)

    # ✅ al cambiar la contraseña sube la versión y las sesiones viejas caducan
    password_version = db.Column(db.Integer, nullable=False, default=1)
    password_changed_at = db.Column(db.DateTime, nullable=True)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def get_id(self):
        return f"{self.role}:{self.password_version}"

    def __repr__(self):
        return f"<RoleAccount {self.role}>"


class MenuItem(db.Model):
    id = db.Column(db.String(120), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    price = db.Column(db.Float, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    is_disabled = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "order": self.order,
            "isDisabled": bool(self.is_disabled),
        }

    def __repr__(self):
        return f"<MenuItem {self.name} #{self.order}>"


class Order(db.Model):
    id = db.Column(db.String(20), primary_key=True)
    type = db.Column(db.String(20), nullable=False)
    table = db.Column(db.String(10), nullable=True)
    customer_name = db.Column(db.String(120), nullable=True)

    total = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(30), nullable=False, default=OrderStatus.PENDIENTE.value)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    # fechas en UTC naive; pueden venir nulas desde respaldos con fechas dañadas
    created_at = db.Column(db.DateTime, nullable=True)
    accepted_at = db.Column(db.DateTime, nullable=True)
    last_updated = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    waiter_id = db.Column(db.String(40), nullable=False)
    waiter_name = db.Column(db.String(80), nullable=False)

    # efectivo / pago_movil / transferencia / divisas / nfc
    payment_method = db.Column(db.String(20), nullable=True)
    payment_reference = db.Column(db.String(10), nullable=True)

    # ✅ cierre del día: las órdenes archivadas salen del set activo
    archived = db.Column(db.Boolean, nullable=False, default=False, index=True)

    items = db.relationship(
        "OrderItem",
        backref="pedido",
        order_by="OrderItem.line",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        data = {
            "id": self.id,
            "type": self.type,
            "items": [i.to_dict() for i in self.items],
            "total": self.total,
            "status": self.status,
            "isPaid": bool(self.is_paid),
            "createdAt": _iso(self.created_at),
            "lastUpdated": _iso(self.last_updated),
            "waiterId": self.waiter_id,
            "waiterName": self.waiter_name,
        }
        optional = {
            "table": self.table,
            "customerName": self.customer_name,
            "notes": self.notes,
            "acceptedAt": _iso(self.accepted_at),
            "deliveredAt": _iso(self.delivered_at),
            "paymentMethod": self.payment_method,
            "paymentReference": self.payment_reference,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    def __repr__(self):
        return f"<Order {self.id} - {self.status}>"


class OrderItem(db.Model):
    """Copia del producto al momento de la orden: editar el menú no la toca."""
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(20), db.ForeignKey("order.id"), nullable=False)
    line = db.Column(db.Integer, nullable=False, default=0)

    menu_item_id = db.Column(db.String(120), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    price = db.Column(db.Float, nullable=False)
    rank = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    @property
    def subtotal(self):
        return float(self.price) * int(self.quantity)

    def to_dict(self):
        return {
            "id": self.menu_item_id,
            "name": self.name,
            "price": self.price,
            "order": self.rank,
            "quantity": self.quantity,
        }


class Broadcast(db.Model):
    """Último anuncio del jefe. Sólo se conserva una fila."""
    id = db.Column(db.Integer, primary_key=True)
    message = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.BigInteger, nullable=False)

    def to_dict(self):
        return {"message": self.message, "timestamp": self.timestamp}


class ChangeEvent(db.Model):
    """Canal de cambios: los clientes lo leen por cursor (id creciente)."""
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(40), nullable=False, index=True)
    value = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "createdAt": _iso(self.created_at),
        }
