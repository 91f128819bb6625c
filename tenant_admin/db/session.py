from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from tenant_admin.core.config import settings


def configure_sqlite(engine: Engine) -> Engine:
    """
    Make SQLite usable for guarded transactions.

    pysqlite defers BEGIN until the first write, so a check-then-act sequence
    would read outside any transaction. Take over transaction control and open
    every transaction with BEGIN IMMEDIATE, which serializes writers.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(url: str) -> Engine:
    backend = make_url(url).get_backend_name()
    connect_args: dict = {}
    if backend.startswith("postgresql"):
        connect_args["options"] = "-c timezone=utc"
    if backend == "sqlite":
        connect_args["check_same_thread"] = False
        return configure_sqlite(create_engine(url, connect_args=connect_args))
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
