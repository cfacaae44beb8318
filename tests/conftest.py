from datetime import datetime, timedelta

import pytest

from app import create_app, pos
from extensions import db


class FakeClock:
    """Reloj fijo (UTC naive) que los tests pueden mover."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def set(self, now):
        self.now = now


@pytest.fixture
def clock():
    # viernes 15/03/2024 12:00 en Caracas (UTC-4)
    return FakeClock(datetime(2024, 3, 15, 16, 0))


@pytest.fixture
def app(clock):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "POS_TIMEZONE": "America/Caracas",
        "WEEK_STARTS_ON": 0,
        "POS_CLOCK": clock,
        "CLEAR_HISTORY_PIN": "1990",
        "SYNC_POLL_SECONDS": 5,
        "DEFAULT_PASSWORDS": {
            "mesero": "Sotos_Mesas",
            "cocina": "Cocina_X",
            "delivery": "Entrega_S",
            "jefe": "Soto_Admin",
        },
    })
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture
def services(app):
    # cada request del test client abre su propio contexto (y su propio g)
    with app.app_context():
        yield pos()


@pytest.fixture
def events(services):
    received = []
    unsubscribe = services.channel.subscribe(received.append)
    yield received
    unsubscribe()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, role, password):
    return client.post("/login", json={"role": role, "password": password})


@pytest.fixture
def as_role(app):
    """Cliente de pruebas ya autenticado con el rol pedido."""
    def _login(role):
        c = app.test_client()
        resp = login(c, role, app.config["DEFAULT_PASSWORDS"][role])
        assert resp.status_code == 200
        return c
    return _login


CONO = {"id": "cono_pizza", "name": "Cono Pizza", "price": 5.0, "order": 0}
REFRESCO = {"id": "refresco_peq", "name": "Refresco Peq.", "price": 2.5, "order": 4}


def item(base, quantity):
    return dict(base, quantity=quantity)


@pytest.fixture
def mesa_draft():
    return {"type": "mesa", "table": "5", "items": [item(CONO, 2)]}
