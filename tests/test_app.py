from conftest import CONO, REFRESCO, item, login


def _create(client, draft):
    return client.post("/api/orders", json=draft)


def test_login_and_me(client):
    resp = login(client, "Mesero", "Sotos_Mesas")
    assert resp.status_code == 200
    assert resp.get_json() == {"role": "mesero"}

    me = client.get("/me").get_json()
    assert me == {"role": "mesero", "pollSeconds": 5}


def test_bad_login(client):
    resp = login(client, "mesero", "nope")
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "Contraseña incorrecta. Inténtalo de nuevo."


def test_requires_login(client):
    resp = client.get("/api/orders")
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Inicia sesión para continuar."}


def test_role_guard(as_role):
    cocina = as_role("cocina")
    assert cocina.post("/api/menu", json={"name": "x", "price": 1}).status_code == 403
    assert cocina.get("/api/reports/sales").status_code == 403
    assert _create(cocina, {"type": "mesa", "table": "1", "items": [item(CONO, 1)]}).status_code == 403


def test_logout(as_role):
    mesero = as_role("mesero")
    assert mesero.post("/logout").status_code == 200
    assert mesero.get("/me").status_code == 401


def test_mesero_order_flow(as_role):
    mesero = as_role("mesero")
    cocina = as_role("cocina")

    resp = _create(mesero, {"type": "mesa", "table": "5", "items": [item(CONO, 2)], "notes": "sin salsa"})
    assert resp.status_code == 201
    order = resp.get_json()
    assert order["total"] == 10.0
    assert order["status"] == "pendiente"
    assert order["waiterId"] == "mesero1"
    assert "customerName" not in order

    kitchen = cocina.get("/api/orders").get_json()
    assert [o["id"] for o in kitchen["views"]["received"]] == [order["id"]]

    for status in ("en_proceso", "lista_para_entrega", "entregada"):
        resp = cocina.patch(f"/api/orders/{order['id']}", json={"status": status})
        assert resp.status_code == 200
    assert resp.get_json()["isPaid"] is False

    resp = mesero.post(f"/api/orders/{order['id']}/pay", json={"paymentMethod": "transferencia", "paymentReference": "0042"})
    paid = resp.get_json()
    assert paid["status"] == "pagada"
    assert paid["paymentReference"] == "0042"

    views = mesero.get("/api/orders").get_json()["views"]
    assert [o["id"] for o in views["paid"]] == [order["id"]]


def test_order_validation_errors(as_role):
    mesero = as_role("mesero")
    resp = _create(mesero, {"type": "mesa", "items": [item(CONO, 1)]})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Por favor, ingresa el número de mesa."}

    resp = _create(mesero, {"type": "pickup", "customerName": "Ana", "items": []})
    assert resp.get_json() == {"error": "La orden está vacía."}

    resp = mesero.post("/api/orders/123/pay", json={})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Selecciona un método de pago."}


def test_update_unknown_order_returns_null(as_role):
    resp = as_role("cocina").patch("/api/orders/nope", json={"status": "en_proceso"})
    assert resp.status_code == 200
    assert resp.get_json() is None


def test_delivery_sees_only_its_orders(as_role):
    mesero = as_role("mesero")
    delivery = as_role("delivery")
    _create(mesero, {"type": "pickup", "customerName": "Ana", "items": [item(CONO, 1)]})
    mine = _create(delivery, {"type": "delivery", "customerName": "Luis", "items": [item(REFRESCO, 1)]}).get_json()

    data = delivery.get("/api/orders").get_json()
    assert [o["id"] for o in data["orders"]] == [mine["id"]]
    assert mine["waiterName"] == "Repartidor"


def test_finalize_service_requires_own_password(as_role):
    mesero = as_role("mesero")
    order = _create(mesero, {"type": "mesa", "table": "2", "items": [item(CONO, 1)], "status": "pagada"}).get_json()
    mesero.patch(f"/api/orders/{order['id']}", json={"status": "entregada"})

    resp = mesero.post("/api/service/finalize", json={"password": "Soto_Admin"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Contraseña incorrecta."}

    resp = mesero.post("/api/service/finalize", json={"password": "Sotos_Mesas"})
    assert resp.get_json() == {"removed": 1}
    assert mesero.get("/api/orders").get_json()["orders"] == []


def test_kitchen_finalize(as_role):
    mesero = as_role("mesero")
    cocina = as_role("cocina")
    order = _create(mesero, {"type": "mesa", "table": "2", "items": [item(CONO, 1)]}).get_json()
    cocina.patch(f"/api/orders/{order['id']}", json={"status": "lista_para_entrega"})
    resp = cocina.post("/api/service/finalize", json={"password": "Cocina_X"})
    assert resp.get_json() == {"removed": 1}


def test_clear_cancelled(as_role):
    mesero = as_role("mesero")
    order = _create(mesero, {"type": "mesa", "table": "2", "items": [item(CONO, 1)]}).get_json()
    mesero.post(f"/api/orders/{order['id']}/cancel")
    assert mesero.post("/api/orders/clear-cancelled").get_json() == {"removed": 1}


def test_menu_management(as_role):
    jefe = as_role("jefe")
    mesero = as_role("mesero")

    resp = jefe.post("/api/menu", json={"name": "Tequeños", "price": "3.5"})
    assert resp.status_code == 201
    new_id = resp.get_json()["id"]

    resp = jefe.post("/api/menu", json={"name": "Malo", "price": "x"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Precio inválido. Ej: 4.50"}

    moved = jefe.post(f"/api/menu/{new_id}/move", json={"direction": "up"}).get_json()
    assert moved["moved"] is True
    assert [i["id"] for i in moved["menuItems"]][-2] == new_id

    assert jefe.post("/api/menu/cono_pizza/move", json={"direction": "up"}).get_json()["moved"] is False

    jefe.post(f"/api/menu/{new_id}/toggle")
    visible = [i["id"] for i in mesero.get("/api/menu").get_json()["menuItems"]]
    assert new_id not in visible
    everything = [i["id"] for i in jefe.get("/api/menu?all=1").get_json()["menuItems"]]
    assert new_id in everything

    assert jefe.delete("/api/menu/no-existe").status_code == 404
    assert jefe.delete(f"/api/menu/{new_id}").status_code == 200


def test_sales_report_and_archive(as_role):
    mesero = as_role("mesero")
    jefe = as_role("jefe")
    order = _create(mesero, {"type": "mesa", "table": "8", "items": [item(CONO, 3)], "paymentMethod": "divisas"}).get_json()
    mesero.patch(f"/api/orders/{order['id']}", json={"status": "entregada", "isPaid": True})

    report = jefe.get("/api/reports/sales").get_json()
    assert report["dailyTotal"] == 15.0
    assert report["dailyByMethod"] == {"divisas": 15.0}

    assert jefe.post("/api/orders/archive-today").get_json() == {"archived": 1}
    snapshot = jefe.get("/api/snapshot").get_json()
    assert snapshot["orders"] == []
    assert [o["id"] for o in snapshot["archivedOrders"]] == [order["id"]]
    # el archivado sigue contando
    assert jefe.get("/api/reports/sales").get_json()["dailyTotal"] == 15.0

    resp = jefe.post("/api/reports/archive/clear-month", json={"pin": "0000", "month": "2024-3"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "PIN Incorrecto"}

    resp = jefe.post("/api/reports/archive/clear-month", json={"pin": "1990", "month": "2024-3"})
    assert resp.get_json() == {"removed": 1}
    assert jefe.post("/api/reports/archive/clear", json={"pin": "1990"}).get_json() == {"removed": 0}


def test_password_change_forces_logout(as_role):
    jefe = as_role("jefe")
    mesero = as_role("mesero")
    assert mesero.get("/me").status_code == 200

    resp = jefe.post("/api/passwords", json={
        "role": "mesero",
        "newPassword": "Mesas_2024",
        "confirmPassword": "Mesas_2024",
        "ownerPassword": "Soto_Admin",
    })
    assert resp.status_code == 200

    assert mesero.get("/me").status_code == 401
    assert login(mesero, "mesero", "Sotos_Mesas").status_code == 401
    assert login(mesero, "mesero", "Mesas_2024").status_code == 200


def test_password_change_rejects_bad_owner_password(as_role):
    jefe = as_role("jefe")
    resp = jefe.post("/api/passwords", json={
        "role": "cocina",
        "newPassword": "Cocina_2024",
        "confirmPassword": "Cocina_2024",
        "ownerPassword": "nope",
    })
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "La contraseña de Jefe es incorrecta. No se puede realizar el cambio."


def test_broadcast_is_shown_until_acknowledged(as_role):
    jefe = as_role("jefe")
    cocina = as_role("cocina")

    assert jefe.post("/api/broadcast", json={"message": "Llegó el pan"}).status_code == 201
    assert jefe.get("/api/broadcast").get_json() == {"broadcast": None}

    pending = cocina.get("/api/broadcast").get_json()["broadcast"]
    assert pending["message"] == "Llegó el pan"

    cocina.post("/api/broadcast/ack", json={})
    assert cocina.get("/api/broadcast").get_json() == {"broadcast": None}

    assert jefe.post("/api/broadcast", json={"message": ""}).status_code == 400


def test_sync_endpoint(as_role):
    mesero = as_role("mesero")
    start = mesero.get("/api/sync").get_json()
    assert start["pollSeconds"] == 5

    cursor = start["cursor"]
    _create(mesero, {"type": "mesa", "table": "1", "items": [item(CONO, 1)]})
    data = mesero.get(f"/api/sync?since={cursor}").get_json()
    assert [e["key"] for e in data["events"]] == ["notification", "orders"]
    assert data["cursor"] == data["events"][-1]["id"]

    again = mesero.get(f"/api/sync?since={data['cursor']}").get_json()
    assert again["events"] == []
    assert again["cursor"] == data["cursor"]

    assert mesero.get("/api/sync?since=abc").status_code == 400


def test_snapshot_hides_archive_from_staff(as_role):
    snapshot = as_role("mesero").get("/api/snapshot").get_json()
    assert snapshot["archivedOrders"] == []
    assert len(snapshot["menuItems"]) == 6
    assert snapshot["broadcast"] is None


def test_malformed_bodies_are_validation_errors(as_role):
    mesero = as_role("mesero")

    resp = mesero.post("/api/orders", json=[1, 2])
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Solicitud inválida."}

    resp = _create(mesero, {"type": "mesa", "table": "1", "items": ["x"]})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Producto inválido en la orden."}

    resp = _create(mesero, {"type": "mesa", "table": "1", "items": [dict(CONO, price="nan", quantity=1)]})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Precio inválido."}

    resp = as_role("jefe").post("/api/menu", json={"name": "Raro", "price": "inf"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Precio inválido. Ej: 4.50"}


def test_archived_status_is_rejected_over_http(as_role):
    mesero = as_role("mesero")
    order = _create(mesero, {"type": "mesa", "table": "1", "items": [item(CONO, 1)]}).get_json()
    resp = mesero.patch(f"/api/orders/{order['id']}", json={"status": "archived"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Estado inválido."}
