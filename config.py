# config.py
import os

from dotenv import load_dotenv

load_dotenv()


def _database_url():
    db_url = os.getenv("DATABASE_URL", "sqlite:///database.db")
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    return db_url


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Zona horaria del local (cortes de día / semana / mes)
    POS_TIMEZONE = os.getenv("POS_TIMEZONE", "America/Caracas")
    # 0 = lunes (convención es), 6 = domingo
    WEEK_STARTS_ON = int(os.getenv("WEEK_STARTS_ON", "0"))

    SYNC_POLL_SECONDS = int(os.getenv("SYNC_POLL_SECONDS", "5"))
    CLEAR_HISTORY_PIN = os.getenv("CLEAR_HISTORY_PIN", "1990")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    DEFAULT_PASSWORDS = {
        "mesero": os.getenv("MESERO_PASSWORD", "Sotos_Mesas"),
        "cocina": os.getenv("COCINA_PASSWORD", "Cocina_X"),
        "delivery": os.getenv("DELIVERY_PASSWORD", "Entrega_S"),
        "jefe": os.getenv("JEFE_PASSWORD", "Soto_Admin"),
    }
