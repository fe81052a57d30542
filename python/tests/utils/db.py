"""Test utilities for database isolation.

Every test runs inside one outer transaction on a single connection that is
rolled back afterwards. Sessions created from the manager's factory join that
transaction through savepoints, so service code can commit freely and
several sessions (request handler, sync run, queue worker) see each other's
writes without anything persisting between tests.
"""

from typing import Any

from sqlalchemy import Connection, Engine, event
from sqlalchemy.orm import Session, sessionmaker


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Let pysqlite run SAVEPOINT inside an explicit transaction.

    pysqlite manages BEGIN itself and gets nested transactions wrong; take
    over transaction control so join_transaction_mode="create_savepoint"
    works on SQLite the way it does on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


class TestDatabaseManager:
    """Manager for test database sessions with savepoint isolation.

    Usage in conftest.py:
        @pytest.fixture
        def db_manager(engine):
            with TestDatabaseManager(engine) as manager:
                yield manager

        session = manager.session_factory()
    """

    __test__ = False

    def __init__(self, engine: Engine):
        self.engine = engine
        self._connection: Connection | None = None
        self.session_factory: sessionmaker[Session] | None = None

    def __enter__(self) -> "TestDatabaseManager":
        """Open the connection and the outer transaction."""
        self._connection = self.engine.connect()
        self._connection.begin()

        self.session_factory = sessionmaker(
            bind=self._connection,
            join_transaction_mode="create_savepoint",
            autoflush=False,
            expire_on_commit=False,
        )
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Roll back everything the test wrote."""
        if self._connection:
            self._connection.rollback()
            self._connection.close()
