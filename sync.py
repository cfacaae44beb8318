# sync.py
"""
Canal de cambios entre clientes.

Cada escritura publica un ChangeEvent (clave + valor nuevo). Los clientes
abiertos leen los eventos por cursor cada pocos segundos, o se suscriben
en el mismo proceso. Aplicar dos veces el mismo estado no cambia nada.
"""
import logging
import threading

from sqlalchemy.exc import SQLAlchemyError

from errors import PersistenceError
from extensions import db
from models import ChangeEvent

logger = logging.getLogger(__name__)

# claves del canal
ORDERS = "orders"
ARCHIVED_ORDERS = "archived_orders"
MENU_ITEMS = "menu_items"
BROADCAST = "broadcast_message"
PASSWORD_CHANGED = "password_change_event"
NOTIFICATION = "notification"

PENDING_KEY = "pos_pending_events"


class SyncChannel:
    def __init__(self):
        self._subscribers = []

    def _pending(self):
        # cola por sesión (una por request): otros requests no la ven
        return db.session().info.setdefault(PENDING_KEY, [])

    def subscribe(self, callback):
        """callback(event_dict) se llama tras cada publish. Devuelve la función para desuscribir."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, key, value, commit=True):
        """
        Guarda un evento. Con commit=True confirma la transacción y entrega
        a los suscriptores todo lo pendiente; con commit=False sólo lo encola.
        """
        event = ChangeEvent(key=key, value=value)
        db.session.add(event)
        db.session.flush()
        self._pending().append(event)
        if commit:
            db.session.commit()
            return self.dispatch()[-1]
        return event.to_dict()

    def dispatch(self):
        pending = self._pending()
        delivered = [e.to_dict() for e in pending]
        pending.clear()
        for data in delivered:
            logger.debug("evento %s #%s publicado", data["key"], data["id"])
            for callback in list(self._subscribers):
                try:
                    callback(data)
                except Exception:
                    logger.exception("suscriptor falló con el evento %s", data["key"])
        return delivered

    def discard_pending(self):
        self._pending().clear()

    def commit(self, key, value):
        """Confirma la operación en curso y publica su nuevo estado, o no hace ninguna de las dos."""
        try:
            return self.publish(key, value)
        except SQLAlchemyError as exc:
            db.session.rollback()
            self.discard_pending()
            logger.exception("❌ no se pudo guardar %s", key)
            raise PersistenceError() from exc

    def events_since(self, cursor=0, limit=200):
        rows = (
            ChangeEvent.query
            .filter(ChangeEvent.id > (cursor or 0))
            .order_by(ChangeEvent.id.asc())
            .limit(limit)
            .all()
        )
        return [e.to_dict() for e in rows]

    def latest_cursor(self):
        last = ChangeEvent.query.order_by(ChangeEvent.id.desc()).first()
        return last.id if last else 0


class ClientMirror:
    """
    Réplica del estado que ve un cliente (una pestaña / dispositivo).

    Sirve tanto para el camino push (apply_event) como para el sondeo
    (resync con una foto completa); ambos son idempotentes.
    """

    def __init__(self, role=None, on_sound=None, on_logout=None):
        self.role = role
        self.cursor = 0
        self.orders = []
        self.archived_orders = []
        self.menu_items = []
        self.broadcast = None
        self.logged_out = False
        self._on_sound = on_sound
        self._on_logout = on_logout
        self.sounds = []

    def _play(self, kind):
        self.sounds.append(kind)
        if self._on_sound:
            self._on_sound(kind)

    def _receive_broadcast(self, value):
        if not value:
            return
        if self.broadcast and self.broadcast.get("timestamp") == value.get("timestamp"):
            return
        self.broadcast = value
        if self.role != "jefe":
            self._play("broadcast")

    def acknowledge_broadcast(self):
        """El cliente cerró el anuncio. Se mantiene el timestamp visto."""
        if self.broadcast:
            self.broadcast = dict(self.broadcast, acknowledged=True)

    def pending_broadcast(self):
        if self.role == "jefe" or not self.broadcast:
            return None
        if self.broadcast.get("acknowledged"):
            return None
        return self.broadcast

    def apply_event(self, event):
        """Aplica un evento del canal. Eventos ya vistos se ignoran."""
        if event["id"] <= self.cursor:
            return False
        self.cursor = event["id"]

        key, value = event["key"], event["value"]
        if key == ORDERS and value is not None:
            self.orders = list(value)
        elif key == ARCHIVED_ORDERS and value is not None:
            self.archived_orders = list(value)
        elif key == MENU_ITEMS and value is not None:
            self.menu_items = list(value)
        elif key == BROADCAST:
            self._receive_broadcast(value)
        elif key == PASSWORD_CHANGED and value:
            if self.role and value.get("changedRole") == self.role:
                self.logged_out = True
                self.role = None
                if self._on_logout:
                    self._on_logout(value)
        elif key == NOTIFICATION and value:
            if self.role in (value.get("audience") or []):
                self._play(value.get("kind"))
        return True

    def apply_events(self, events):
        return sum(1 for e in events if self.apply_event(e))

    def resync(self, snapshot):
        """
        Reemplaza el estado con una foto completa {cursor, orders, ...}.
        Una foto que no es más nueva que lo que ya se tiene no hace nada.
        """
        cursor = snapshot.get("cursor", 0)
        if cursor <= self.cursor and self.cursor:
            return False
        self.cursor = cursor
        self.orders = list(snapshot.get("orders", []))
        self.archived_orders = list(snapshot.get("archivedOrders", []))
        self.menu_items = list(snapshot.get("menuItems", []))
        self._receive_broadcast(snapshot.get("broadcast"))
        return True


class PollingSync:
    """Re-sincroniza un ClientMirror cada `interval` segundos (respaldo del push)."""

    def __init__(self, fetch, mirror, interval=5):
        self.fetch = fetch
        self.mirror = mirror
        self.interval = interval
        self._stop = threading.Event()
        self._thread = None

    def poll_once(self):
        try:
            snapshot = self.fetch()
        except Exception:
            logger.exception("no se pudo leer el estado remoto")
            return False
        return self.mirror.resync(snapshot)

    def _run(self):
        while not self._stop.wait(self.interval):
            self.poll_once()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="pos-sync", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None

    @property
    def running(self):
        return bool(self._thread and self._thread.is_alive())
