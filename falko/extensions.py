"""
Flask extensions shared across the Falko loyalty and returns service.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Database (ledger, rewards, returns)
db = SQLAlchemy()

# Schema migrations (`flask db migrate` / `flask db upgrade`)
migrate = Migrate()


def configure_sqlite_transactions(engine) -> None:
    """
    Let SQLAlchemy own SQLite transactions so SAVEPOINT works.

    pysqlite defers BEGIN until the first write, which breaks nested
    transactions (used for first-use account creation).
    """
    from sqlalchemy import event

    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin(conn):
        conn.exec_driver_sql('BEGIN')
