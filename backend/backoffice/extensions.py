# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def enable_sqlite_savepoints(engine) -> None:
    """
    Let SQLAlchemy own SQLite transaction boundaries.

    The sqlite3 driver delays BEGIN until the first DML statement, which
    makes SAVEPOINT (Session.begin_nested) release the whole transaction.
    Batch reception isolates each insert in a savepoint, so the driver's
    implicit transaction handling is switched off and BEGIN is emitted
    explicitly.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")
