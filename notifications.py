# notifications.py
import logging

from models import ROLES
from sync import NOTIFICATION

logger = logging.getLogger(__name__)

# sonidos que reproducen los clientes
ORDER_CREATED = "order"
ORDER_READY = "order"
PAYMENT = "payment"
BROADCAST = "broadcast"
LOGOUT = "logout"

KITCHEN_FACING = ("cocina", "jefe")


class Notifier:
    """Publica "suena X en los clientes de los roles Y" en el canal de cambios."""

    def __init__(self, channel):
        self.channel = channel

    def notify(self, kind, audience, title, message, exclude=()):
        audience = [r for r in audience if r not in exclude]
        if not audience:
            logger.debug("notificación %s sin destinatarios", kind)
            return None
        logger.info("🔔 %s -> %s: %s", kind, ",".join(audience), message)
        return self.channel.publish(NOTIFICATION, {
            "kind": kind,
            "audience": audience,
            "title": title,
            "message": message,
        }, commit=False)

    def order_created(self, order, actor_role=None):
        if order.type == "mesa":
            ident = f"para la mesa {order.table}"
        elif order.type == "delivery":
            ident = "para delivery"
        else:
            ident = f"de {order.customer_name}"
        # cocina no se avisa a sí misma
        exclude = ("cocina",) if actor_role == "cocina" else ()
        return self.notify(
            ORDER_CREATED, KITCHEN_FACING, "Nuevo Pedido",
            f"Ha entrado un nuevo pedido {ident}", exclude=exclude,
        )

    def payment_received(self, order):
        return self.notify(
            PAYMENT, ROLES, "Pago Recibido",
            f"La orden {order.id} fue pagada.", exclude=("jefe",),
        )

    def order_ready(self, order):
        if order.type == "delivery":
            return self.notify(
                ORDER_READY, ("delivery", "jefe"), "Pedido Listo para Delivery",
                "El pedido a domicilio está listo para ser recogido.",
            )
        ident = f"Mesa #{order.table}" if order.type == "mesa" else f"Pedido de {order.customer_name}"
        return self.notify(
            ORDER_READY, ("mesero", "jefe"), "Orden Lista",
            f"El pedido de {ident} está listo para ser entregado.",
        )

    def broadcast(self, message):
        return self.notify(BROADCAST, ROLES, "Anuncio del Jefe", message, exclude=("jefe",))

    def forced_logout(self, role):
        return self.notify(
            LOGOUT, (role,), "Contraseña Actualizada",
            "Tu contraseña ha sido cambiada por el Jefe. Por favor, inicia sesión de nuevo.",
        )
