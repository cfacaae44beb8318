# accounts.py
"""Contraseñas por rol, cierre de sesión forzado y anuncios del jefe."""
import logging

from extensions import db
from errors import AuthError, ValidationError
from models import ROLES, RoleAccount, Broadcast
from timezones import utc_now, to_epoch_ms
import sync

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class AccountManager:
    def __init__(self, channel, notifier, clock=utc_now):
        self.channel = channel
        self.notifier = notifier
        self.clock = clock

    def _now_ms(self):
        return to_epoch_ms(self.clock())

    def ensure_role(self, role, password):
        """Crea la cuenta del rol si no existe (semilla)."""
        account = db.session.get(RoleAccount, role)
        if account:
            return account
        account = RoleAccount(role=role, password_version=1)
        account.set_password(password)
        db.session.add(account)
        return account

    def seed_passwords(self, defaults):
        for role in ROLES:
            self.ensure_role(role, defaults[role])
        db.session.commit()

    def load(self, user_id):
        """user_id = 'rol:versión'. Si la versión ya no coincide la sesión caducó."""
        role, _, version = str(user_id).partition(":")
        account = db.session.get(RoleAccount, role)
        if account is None or str(account.password_version) != version:
            return None
        return account

    def authenticate(self, role, password):
        if role not in ROLES:
            raise AuthError("Rol desconocido.")
        account = db.session.get(RoleAccount, role)
        if account is None or not account.check_password(password or ""):
            raise AuthError("Contraseña incorrecta. Inténtalo de nuevo.")
        return account

    def verify_role_password(self, role, password):
        """Confirmación de acciones delicadas (finalizar servicio)."""
        account = db.session.get(RoleAccount, role)
        if account is None or not account.check_password(password or ""):
            raise ValidationError("Contraseña incorrecta.")
        return True

    def change_password(self, role, new_password, confirm_password, owner_password):
        if not role or not new_password or not owner_password:
            raise ValidationError("Todos los campos son obligatorios.")
        if role not in ROLES:
            raise ValidationError("Rol desconocido.")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError("La nueva contraseña debe tener al menos 6 caracteres.")
        if new_password != confirm_password:
            raise ValidationError("Las contraseñas nuevas no coinciden.")

        owner = db.session.get(RoleAccount, "jefe")
        if owner is None or not owner.check_password(owner_password):
            raise ValidationError("La contraseña de Jefe es incorrecta. No se puede realizar el cambio.")

        account = db.session.get(RoleAccount, role)
        if account is None:
            account = RoleAccount(role=role, password_version=0)
            db.session.add(account)
        account.set_password(new_password)
        # ✅ las sesiones abiertas de ese rol quedan inválidas
        account.password_version = (account.password_version or 0) + 1
        account.password_changed_at = self.clock()

        self.notifier.forced_logout(role)
        event = self.channel.commit(sync.PASSWORD_CHANGED, {
            "changedRole": role,
            "timestamp": self._now_ms(),
        })
        logger.info("🔑 contraseña de %s actualizada", role)
        return event

    # ---------- ANUNCIOS ----------
    def current_broadcast(self):
        return Broadcast.query.order_by(Broadcast.id.desc()).first()

    def broadcast(self, message):
        message = (message or "").strip()
        if not message:
            raise ValidationError("El mensaje no puede estar vacío.")

        # el más reciente gana
        Broadcast.query.delete()
        current = Broadcast(message=message, timestamp=self._now_ms())
        db.session.add(current)
        db.session.flush()

        self.notifier.broadcast(message)
        self.channel.commit(sync.BROADCAST, current.to_dict())
        logger.info("📣 anuncio enviado: %s", message)
        return current

    def pending_broadcast(self, role, last_seen_timestamp=None):
        """El anuncio vigente si este cliente aún no lo ha visto. El jefe nunca lo recibe."""
        if role == "jefe":
            return None
        current = self.current_broadcast()
        if current is None or current.timestamp == last_seen_timestamp:
            return None
        return current
