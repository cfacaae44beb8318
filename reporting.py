# reporting.py
"""Reporte de ventas del jefe: hoy, esta semana e historial año / mes / semana / día."""
import logging

from extensions import db
from errors import ValidationError
from models import Order
from timezones import utc_now, to_local, start_of_week, week_of_month
import sync

logger = logging.getLogger(__name__)

MESES = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]
DIAS = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]


def is_paid_equivalent(order):
    """Cuenta como venta: pagada, o cobrada y ya lista / entregada."""
    if order.status == "pagada":
        return True
    return bool(order.is_paid) and order.status in ("entregada", "lista_para_entrega")


def parse_month_key(month_key):
    """'2024-3' -> (2024, 3). El mes va de 1 a 12."""
    try:
        year_str, month_str = str(month_key).strip().split("-")
        year, month = int(year_str), int(month_str)
    except (AttributeError, ValueError):
        raise ValidationError("Mes inválido. Ej: 2024-3")
    if not 1 <= month <= 12:
        raise ValidationError("Mes inválido. Ej: 2024-3")
    return year, month


def format_day(d):
    return f"{DIAS[d.weekday()]}, {d.day} de {MESES[d.month - 1]}"


class SalesReport:
    def __init__(self, channel, tz, week_starts_on=0, clock=utc_now):
        self.channel = channel
        self.tz = tz
        self.week_starts_on = week_starts_on
        self.clock = clock

    def _local(self, dt):
        return to_local(dt, self.tz) if dt else None

    def sales_orders(self):
        """Activas que ya cuentan como venta + todo el historial, sin repetir ids."""
        active = [o for o in Order.query.filter_by(archived=False).all() if is_paid_equivalent(o)]
        archived = Order.query.filter_by(archived=True).all()
        unique = {}
        for order in active + archived:
            unique.setdefault(order.id, order)
        return list(unique.values())

    def _dated(self, orders):
        # órdenes sin fecha válida no entran a los totales
        return [(o, self._local(o.last_updated)) for o in orders if o.last_updated is not None]

    def daily_total(self, orders=None):
        today = self._local(self.clock()).date()
        orders = self.sales_orders() if orders is None else orders
        return round(sum(o.total for o, dt in self._dated(orders) if dt.date() == today), 2)

    def weekly_total(self, orders=None):
        today = self._local(self.clock()).date()
        week_start = start_of_week(today, self.week_starts_on)
        orders = self.sales_orders() if orders is None else orders
        return round(sum(o.total for o, dt in self._dated(orders) if week_start <= dt.date() <= today), 2)

    def daily_by_method(self, orders=None):
        today = self._local(self.clock()).date()
        orders = self.sales_orders() if orders is None else orders
        por_metodo = {}
        conteo = 0
        for o, dt in self._dated(orders):
            if dt.date() != today:
                continue
            conteo += 1
            metodo = o.payment_method or "otro"
            por_metodo[metodo] = round(por_metodo.get(metodo, 0.0) + o.total, 2)
        return {"count": conteo, "byMethod": por_metodo}

    def historical(self, orders=None):
        orders = self.sales_orders() if orders is None else orders

        months = {}
        for order, dt in self._dated(orders):
            d = dt.date()
            month = months.setdefault((d.year, d.month), {})
            week = month.setdefault(week_of_month(d, self.week_starts_on), {})
            week.setdefault(d, []).append((order, dt))

        result = []
        for (year, month_num), weeks in sorted(months.items(), reverse=True):
            week_rows = []
            for week_num, days in sorted(weeks.items(), reverse=True):
                day_rows = []
                for d, entries in days.items():
                    entries.sort(key=lambda e: e[1], reverse=True)
                    day_rows.append({
                        "date": d.isoformat(),
                        "dayName": format_day(d),
                        "total": round(sum(o.total for o, _ in entries), 2),
                        "orders": [o.to_dict() for o, _ in entries],
                        "_latest": entries[0][1],
                    })
                day_rows.sort(key=lambda r: r["_latest"], reverse=True)
                for row in day_rows:
                    del row["_latest"]
                week_rows.append({
                    "week": week_num,
                    "weekName": f"Semana {week_num}",
                    "total": round(sum(r["total"] for r in day_rows), 2),
                    "days": day_rows,
                })
            result.append({
                "monthKey": f"{year}-{month_num}",
                "year": year,
                "month": month_num,
                "monthName": MESES[month_num - 1],
                "total": round(sum(w["total"] for w in week_rows), 2),
                "weeks": week_rows,
            })
        return result

    def summary(self):
        orders = self.sales_orders()
        hoy = self.daily_by_method(orders)
        return {
            "dailyTotal": self.daily_total(orders),
            "weeklyTotal": self.weekly_total(orders),
            "dailyCount": hoy["count"],
            "dailyByMethod": hoy["byMethod"],
            "history": self.historical(orders),
        }

    # ---------- BORRAR HISTORIAL ----------
    def _save(self):
        archived = Order.query.filter_by(archived=True).order_by(Order.last_updated.desc()).all()
        self.channel.commit(sync.ARCHIVED_ORDERS, [o.to_dict() for o in archived])

    def clear_archived_orders(self):
        doomed = Order.query.filter_by(archived=True).all()
        for order in doomed:
            db.session.delete(order)
        self._save()
        logger.info("🗑️ historial de ventas eliminado (%s órdenes)", len(doomed))
        return len(doomed)

    def clear_archived_orders_by_month(self, month_key):
        year, month = parse_month_key(month_key)
        removed = 0
        for order in Order.query.filter_by(archived=True).all():
            dt = self._local(order.last_updated)
            # sin fecha válida: se conserva
            if dt is None:
                continue
            if dt.year == year and dt.month == month:
                db.session.delete(order)
                removed += 1
        self._save()
        logger.info("🗑️ historial %s eliminado (%s órdenes)", month_key, removed)
        return removed
