"""Database session. SQLite compatible with connection pooling."""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from marketplace.core.config import settings


def build_engine(url: str):
    if url.startswith("sqlite"):
        # SQLite: NullPool for thread-safety, except in-memory databases which must share one connection
        from sqlalchemy.pool import NullPool, StaticPool
        pool = StaticPool if ":memory:" in url else NullPool
        engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=pool)

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    # PostgreSQL/MySQL: QueuePool with sensible defaults
    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
