# migrar_respaldo.py
"""
Importa un respaldo del navegador (JSON con las claves de localStorage)
a la base de datos:

    python migrar_respaldo.py respaldo.json

Claves leídas: sotos_menu_items, sotos_orders, sotos_archived_orders, sotos_passwords.
Fechas que no se pueden leer quedan nulas; la orden se importa igual.
"""
import json
import sys

from app import create_app, pos
from extensions import db
from models import MenuItem, Order, OrderItem, RoleAccount, ROLES
from orders import compute_total
from timezones import parse_timestamp
import sync


def _load_list(data, key):
    raw = data.get(key)
    if raw is None:
        return []
    # localStorage guarda strings JSON
    if isinstance(raw, str):
        raw = json.loads(raw)
    return list(raw or [])


def import_menu(items):
    creados = 0
    for n, raw in enumerate(items):
        if db.session.get(MenuItem, raw["id"]):
            continue
        db.session.add(MenuItem(
            id=raw["id"],
            name=raw["name"],
            price=float(raw.get("price") or 0),
            order=raw["order"] if raw.get("order") is not None else n,
            is_disabled=bool(raw.get("isDisabled", False)),
        ))
        creados += 1
    return creados


def import_order(raw, archived):
    if db.session.get(Order, str(raw["id"])):
        return False

    items = [
        OrderItem(
            line=n,
            menu_item_id=str(i.get("id", "")),
            name=i.get("name", ""),
            price=float(i.get("price") or 0),
            rank=int(i.get("order") or 0),
            quantity=int(i.get("quantity") or 1),
        )
        for n, i in enumerate(raw.get("items") or [])
        if int(i.get("quantity") or 0) > 0
    ]
    status = raw.get("status", "pendiente")
    db.session.add(Order(
        id=str(raw["id"]),
        type=raw.get("type", "mesa"),
        table=raw.get("table"),
        customer_name=raw.get("customerName"),
        items=items,
        total=compute_total(items),
        status=status,
        is_paid=bool(raw.get("isPaid", status == "pagada")),
        notes=raw.get("notes"),
        created_at=parse_timestamp(raw.get("timestamp") or raw.get("createdAt")),
        accepted_at=parse_timestamp(raw.get("acceptedAt")),
        last_updated=parse_timestamp(raw.get("lastUpdated")),
        delivered_at=parse_timestamp(raw.get("deliveredAt")),
        waiter_id=raw.get("waiterId") or "mesero1",
        waiter_name=raw.get("waiterName") or "Mesero",
        payment_method=raw.get("paymentMethod"),
        payment_reference=raw.get("paymentReference"),
        archived=archived or status == "archived",
    ))
    return True


def import_passwords(passwords):
    cambiadas = 0
    for role in ROLES:
        secret = (passwords or {}).get(role)
        if not secret:
            continue
        account = db.session.get(RoleAccount, role)
        if account is None:
            account = RoleAccount(role=role, password_version=1)
            db.session.add(account)
        elif not account.check_password(secret):
            account.password_version = (account.password_version or 0) + 1
        account.set_password(secret)
        cambiadas += 1
    return cambiadas


def main(path):
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)

    app = create_app()
    with app.app_context():
        menu = import_menu(_load_list(data, "sotos_menu_items"))
        activas = sum(import_order(o, False) for o in _load_list(data, "sotos_orders"))
        archivadas = sum(import_order(o, True) for o in _load_list(data, "sotos_archived_orders"))

        passwords = data.get("sotos_passwords")
        if isinstance(passwords, str):
            passwords = json.loads(passwords)
        roles = import_passwords(passwords)

        db.session.commit()
        # avisar a los clientes abiertos
        services = pos()
        services.channel.publish(sync.ARCHIVED_ORDERS, services.orders.archived_payload(), commit=False)
        services.channel.publish(sync.MENU_ITEMS, services.menu.payload(), commit=False)
        services.channel.publish(sync.ORDERS, services.orders.payload())

    print(f"➕ {menu} productos, {activas} órdenes activas, {archivadas} archivadas, {roles} contraseñas")
    print("✅ Migración lista.")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        raise SystemExit("Uso: python migrar_respaldo.py respaldo.json")
    main(sys.argv[1])
