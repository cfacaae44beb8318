# timezones.py
from datetime import datetime, date, time, timedelta, timezone
from zoneinfo import ZoneInfo

UTC = ZoneInfo("UTC")


def utc_now() -> datetime:
    """Hora actual en UTC naive, que es como se guarda en la DB."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(dt: datetime, tz: ZoneInfo) -> datetime:
    """
    Convierte cualquier datetime a la zona del local.
    Si viene naive (sin tzinfo), asumimos UTC.
    """
    if not dt:
        return dt
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(tz)


def local_midnight_utc(d: date, tz: ZoneInfo) -> datetime:
    """Medianoche local del día `d`, como UTC naive para comparar contra la DB."""
    inicio_local = datetime.combine(d, time.min).replace(tzinfo=tz)
    return inicio_local.astimezone(UTC).replace(tzinfo=None)


def to_epoch_ms(dt: datetime) -> int:
    """Milisegundos epoch de un datetime UTC naive (como los timestamps del navegador)."""
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def start_of_week(d: date, week_starts_on: int = 0) -> date:
    return d - timedelta(days=(d.weekday() - week_starts_on) % 7)


def week_of_month(d: date, week_starts_on: int = 0) -> int:
    """Semana del mes (1..6) contando semanas parciales, como en los calendarios."""
    first = d.replace(day=1)
    offset = (first.weekday() - week_starts_on) % 7
    return (d.day + offset - 1) // 7 + 1


def parse_timestamp(value):
    """
    Lee fechas de respaldos (ISO 8601 o milisegundos epoch).
    Devuelve None si no se puede interpretar.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        if isinstance(value, (int, float)):
            dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        else:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (TypeError, ValueError, OverflowError, OSError):
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC).replace(tzinfo=None)
    return dt
