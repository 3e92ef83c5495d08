# ticketdesk/commands.py

from flask.cli import with_appcontext
from ticketdesk.auth.models import ROLES
from ticketdesk.comments import migrate_legacy_trail
from ticketdesk import mongo
import click
import pymongo

DEMO_PROJECT = "Demo"


@click.command("init-db-data")
@with_appcontext
def init_db_data_command():
    """Crea los índices y usuarios de ejemplo (uno por rol)."""
    click.echo("Iniciando carga de datos iniciales para MongoDB...")
    db = mongo.db

    try:
        # --- Índices ---
        db.tickets.create_index("ticketNumber", unique=True)
        db.tickets.create_index([("email", pymongo.ASCENDING), ("created", pymongo.DESCENDING)])
        db.tickets.create_index("assignedTo.email")
        db.users.create_index("email", unique=True)
        click.echo("Índices creados.")

        # --- Usuarios de Ejemplo ---
        for role in ROLES:
            email = f"{role.replace('_', '.')}@example.com"
            if db.users.find_one({"email": email}):
                click.echo(f"El usuario '{email}' ya existe.")
                continue
            db.users.insert_one({
                "email": email,
                "firstName": role.replace('_', ' ').title(),
                "lastName": "Demo",
                "role": role,
                "project": DEMO_PROJECT,
            })
            click.echo(f"Usuario '{email}' ({role}) creado con éxito.")

        click.echo("\nCarga de datos iniciales finalizada con éxito.")

    except pymongo.errors.PyMongoError as e:
        raise click.ClickException(f"Ocurrió un error de base de datos durante la inicialización: {e}")


@click.command("migrate-comments")
@with_appcontext
def migrate_comments_command():
    """Unifica adminResponses/customerResponses en `comments` (ordenado por fecha)."""
    try:
        migrated = migrate_legacy_trail(mongo.db.tickets)
    except pymongo.errors.PyMongoError as e:
        raise click.ClickException(f"Error de base de datos durante la migración: {e}")
    click.echo(f"Tickets migrados: {migrated}")
