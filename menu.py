# menu.py
import logging
import math
import re
import time

from extensions import db
from errors import NotFoundError, ValidationError
from models import MenuItem
import sync

logger = logging.getLogger(__name__)

DEFAULT_MENU = [
    ("cono_pizza", "Cono Pizza", 5.00),
    ("cono_pizza_xxl", "Cono Pizza XXL", 8.00),
    ("rac_papas_fritas", "Rac. Papas Fritas", 4.00),
    ("banderilla", "Banderilla", 4.00),
    ("refresco_peq", "Refresco Peq.", 2.50),
    ("refresco_grande", "Refresco Grande", 4.00),
]


def parse_price(value):
    try:
        precio = float(value)
        if not math.isfinite(precio) or precio < 0:
            raise ValueError()
    except (TypeError, ValueError):
        raise ValidationError("Precio inválido. Ej: 4.50")
    return precio


def make_item_id(name):
    return re.sub(r"\s+", "_", name.lower()) + "_" + str(int(time.time() * 1000))


class MenuManager:
    def __init__(self, channel):
        self.channel = channel

    def list_menu(self, include_disabled=True):
        """Menú ordenado por rango. Sin los desactivados para la toma de pedidos."""
        query = MenuItem.query
        if not include_disabled:
            query = query.filter_by(is_disabled=False)
        return query.order_by(MenuItem.order.asc(), MenuItem.id.asc()).all()

    def payload(self):
        return [i.to_dict() for i in self.list_menu()]

    def _save(self):
        self.channel.commit(sync.MENU_ITEMS, self.payload())

    def _get_or_404(self, item_id):
        item = db.session.get(MenuItem, item_id)
        if item is None:
            raise NotFoundError("Producto no encontrado.")
        return item

    def seed_default_menu(self):
        if MenuItem.query.count() > 0:
            return 0
        for rank, (item_id, name, price) in enumerate(DEFAULT_MENU):
            db.session.add(MenuItem(id=item_id, name=name, price=price, order=rank, is_disabled=False))
        self._save()
        return len(DEFAULT_MENU)

    def add_menu_item(self, name, price):
        nombre = (name or "").strip()
        if not nombre:
            raise ValidationError("El nombre es obligatorio.")
        precio = parse_price(price)

        max_rank = db.session.query(db.func.max(MenuItem.order)).scalar()
        item = MenuItem(
            id=make_item_id(nombre),
            name=nombre,
            price=precio,
            order=0 if max_rank is None else max_rank + 1,
            is_disabled=False,
        )
        db.session.add(item)
        self._save()
        logger.info("➕ producto %s agregado al menú (#%s)", item.name, item.order)
        return item

    def update_menu_item(self, item_id, fields):
        item = self._get_or_404(item_id)

        # validar todo antes de tocar el producto
        nombre = item.name
        if "name" in fields:
            nombre = (fields.get("name") or "").strip()
            if not nombre:
                raise ValidationError("El nombre es obligatorio.")
        precio = parse_price(fields["price"]) if "price" in fields else item.price

        item.name = nombre
        item.price = precio
        if "isDisabled" in fields:
            item.is_disabled = bool(fields["isDisabled"])
        self._save()
        logger.info("✏️ producto %s actualizado", item.id)
        return item

    def delete_menu_item(self, item_id):
        # las órdenes guardan su propia copia: no se tocan
        item = self._get_or_404(item_id)
        db.session.delete(item)
        self._save()
        logger.info("🗑️ producto %s eliminado", item_id)

    def move_menu_item(self, item_id, direction):
        """
        Intercambia el rango con el vecino de arriba / abajo.
        En los extremos (o con un id desconocido) no hace nada.
        """
        if direction not in ("up", "down"):
            raise ValidationError("Dirección inválida.")

        items = self.list_menu()
        index = next((n for n, i in enumerate(items) if i.id == item_id), None)
        if index is None:
            return False
        target = index - 1 if direction == "up" else index + 1
        if target < 0 or target >= len(items):
            return False

        current, neighbor = items[index], items[target]
        # ambos rangos en la misma transacción
        current.order, neighbor.order = neighbor.order, current.order
        self._save()
        logger.info("↕️ producto %s movido %s", item_id, direction)
        return True

    def toggle_menu_item_availability(self, item_id):
        item = self._get_or_404(item_id)
        item.is_disabled = not bool(item.is_disabled)
        self._save()
        logger.info("producto %s disponible=%s", item.id, not item.is_disabled)
        return item
