import threading

import pytest
from sqlalchemy.exc import SQLAlchemyError

import sync
from errors import PersistenceError
from extensions import db
from models import ChangeEvent
from sync import ClientMirror, PollingSync


def _event(event_id, key, value):
    return {"id": event_id, "key": key, "value": value}


# ---------- canal ----------
def test_subscribers_only_see_committed_events(services, events):
    channel = services.channel
    channel.publish(sync.NOTIFICATION, {"kind": "order", "audience": ["cocina"]}, commit=False)
    assert events == []

    channel.commit(sync.ORDERS, [])
    assert [e["key"] for e in events] == ["notification", "orders"]
    assert events[0]["id"] < events[1]["id"]


def test_events_since_cursor(services):
    channel = services.channel
    start = channel.latest_cursor()
    first = channel.commit(sync.ORDERS, [])
    second = channel.commit(sync.MENU_ITEMS, [])

    assert [e["id"] for e in channel.events_since(start)] == [first["id"], second["id"]]
    assert [e["id"] for e in channel.events_since(first["id"])] == [second["id"]]
    assert channel.events_since(second["id"]) == []
    assert channel.latest_cursor() == second["id"]


def test_failing_subscriber_does_not_break_others(services):
    channel = services.channel
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    off_broken = channel.subscribe(broken)
    off_seen = channel.subscribe(seen.append)
    channel.commit(sync.ORDERS, [])
    off_broken()
    off_seen()
    assert len(seen) == 1


def test_unsubscribe(services):
    seen = []
    off = services.channel.subscribe(seen.append)
    off()
    off()
    services.channel.commit(sync.ORDERS, [])
    assert seen == []


def test_failed_commit_rolls_back_and_raises(services, events, monkeypatch):
    channel = services.channel
    before = ChangeEvent.query.count()
    channel.publish(sync.NOTIFICATION, {"kind": "payment", "audience": ["mesero"]}, commit=False)

    def fail():
        raise SQLAlchemyError("disco lleno")

    monkeypatch.setattr(db.session(), "commit", fail)
    with pytest.raises(PersistenceError) as exc:
        channel.commit(sync.ORDERS, [])
    monkeypatch.undo()

    assert exc.value.status_code == 500
    assert events == []
    assert ChangeEvent.query.count() == before
    # lo descartado no sale con el siguiente commit
    channel.commit(sync.MENU_ITEMS, [])
    assert [e["key"] for e in events] == ["menu_items"]


def test_pending_queue_belongs_to_its_own_session(app, services, events):
    channel = services.channel
    services.notifier.notify("order", ["cocina"], "Nuevo Pedido", "mesa 3")

    # otro request (otro contexto, otra sesión) no toca la cola de este
    with app.app_context():
        assert channel.dispatch() == []
        channel.discard_pending()

    assert events == []
    channel.commit(sync.ORDERS, [])
    assert [e["key"] for e in events] == ["notification", "orders"]


# ---------- réplica del cliente ----------
def test_mirror_applies_each_event_once():
    mirror = ClientMirror(role="mesero")
    orders = [{"id": "1"}]
    assert mirror.apply_event(_event(3, sync.ORDERS, orders)) is True
    assert mirror.apply_event(_event(3, sync.ORDERS, [])) is False
    assert mirror.apply_event(_event(2, sync.ORDERS, [])) is False
    assert mirror.orders == orders
    assert mirror.cursor == 3


def test_mirror_replaces_collections():
    mirror = ClientMirror(role="jefe")
    applied = mirror.apply_events([
        _event(1, sync.MENU_ITEMS, [{"id": "a"}]),
        _event(2, sync.ARCHIVED_ORDERS, [{"id": "x"}]),
        _event(3, sync.MENU_ITEMS, [{"id": "b"}]),
    ])
    assert applied == 3
    assert mirror.menu_items == [{"id": "b"}]
    assert mirror.archived_orders == [{"id": "x"}]


def test_broadcast_sounds_once_per_timestamp():
    sounds = []
    mirror = ClientMirror(role="cocina", on_sound=sounds.append)
    message = {"message": "Cerramos a las 10", "timestamp": 1700}
    mirror.apply_event(_event(1, sync.BROADCAST, message))
    mirror.apply_event(_event(2, sync.BROADCAST, dict(message)))
    assert sounds == ["broadcast"]
    assert mirror.pending_broadcast() == message

    mirror.acknowledge_broadcast()
    assert mirror.pending_broadcast() is None
    mirror.resync({"cursor": 5, "broadcast": dict(message)})
    assert sounds == ["broadcast"]

    mirror.apply_event(_event(6, sync.BROADCAST, {"message": "Otro", "timestamp": 1800}))
    assert sounds == ["broadcast", "broadcast"]
    assert mirror.pending_broadcast()["message"] == "Otro"


def test_owner_never_gets_the_broadcast():
    mirror = ClientMirror(role="jefe")
    mirror.apply_event(_event(1, sync.BROADCAST, {"message": "hola", "timestamp": 1}))
    assert mirror.sounds == []
    assert mirror.pending_broadcast() is None


def test_password_change_logs_out_only_that_role():
    logouts = []
    mesero = ClientMirror(role="mesero", on_logout=logouts.append)
    cocina = ClientMirror(role="cocina")
    event = _event(1, sync.PASSWORD_CHANGED, {"changedRole": "mesero", "timestamp": 10})

    mesero.apply_event(event)
    cocina.apply_event(event)
    assert mesero.logged_out is True
    assert mesero.role is None
    assert logouts == [{"changedRole": "mesero", "timestamp": 10}]
    assert cocina.logged_out is False


def test_notifications_respect_audience():
    mesero = ClientMirror(role="mesero")
    cocina = ClientMirror(role="cocina")
    event = _event(1, sync.NOTIFICATION, {"kind": "order", "audience": ["cocina", "jefe"]})
    mesero.apply_event(event)
    cocina.apply_event(event)
    assert mesero.sounds == []
    assert cocina.sounds == ["order"]


def test_resync_ignores_stale_snapshots():
    mirror = ClientMirror(role="mesero")
    assert mirror.resync({"cursor": 4, "orders": [{"id": "1"}], "menuItems": [{"id": "m"}]}) is True
    assert mirror.resync({"cursor": 4, "orders": []}) is False
    assert mirror.resync({"cursor": 2, "orders": []}) is False
    assert mirror.orders == [{"id": "1"}]
    assert mirror.menu_items == [{"id": "m"}]


def test_live_channel_feeds_mirror(services, mesa_draft):
    mirror = ClientMirror(role="cocina")
    off = services.channel.subscribe(mirror.apply_event)
    order = services.orders.add_order(mesa_draft, actor_role="mesero")
    off()
    assert [o["id"] for o in mirror.orders] == [order.id]
    assert mirror.sounds == ["order"]


# ---------- sondeo ----------
def test_poll_once_resyncs_mirror():
    mirror = ClientMirror(role="mesero")
    poller = PollingSync(lambda: {"cursor": 7, "orders": [{"id": "9"}]}, mirror, interval=0.01)
    assert poller.poll_once() is True
    assert mirror.cursor == 7
    assert poller.poll_once() is False


def test_poll_once_survives_fetch_errors():
    def fetch():
        raise ConnectionError("sin red")

    mirror = ClientMirror(role="mesero")
    assert PollingSync(fetch, mirror).poll_once() is False
    assert mirror.cursor == 0


def test_polling_thread_runs_until_stopped():
    called = threading.Event()
    counter = {"n": 0}

    def fetch():
        counter["n"] += 1
        called.set()
        return {"cursor": counter["n"]}

    mirror = ClientMirror(role="cocina")
    poller = PollingSync(fetch, mirror, interval=0.01)
    poller.start()
    try:
        assert called.wait(2)
        assert poller.running
    finally:
        poller.stop()
    assert not poller.running
    assert mirror.cursor >= 1
