# ini_db.py
from app import create_app, pos
from extensions import db
from models import MenuItem, RoleAccount

app = create_app()

with app.app_context():
    # create_app ya crea tablas y siembra contraseñas + menú si faltan
    db.create_all()
    pos().accounts.seed_passwords(app.config["DEFAULT_PASSWORDS"])
    pos().menu.seed_default_menu()

    print(f"✅ DB lista: {RoleAccount.query.count()} roles, {MenuItem.query.count()} productos en el menú")
