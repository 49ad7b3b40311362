"""
Connection pool lifecycle for the relational store.

This module handles:
- SQLAlchemy engine creation with a bounded QueuePool
- Just-in-time credentials for every new physical connection
- Scoped acquisition (connection / session) with guaranteed release
- Idle keep-alive enforcement and a periodic liveness probe
- Draining shutdown that refuses new acquisitions

Usage:
    pool_manager = ConnectionPoolManager(DatabaseConfig())
    pool_manager.initialize()
    with pool_manager.session() as session:
        # Do database operations
        pass
    pool_manager.shutdown()
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from loguru import logger
from sqlalchemy import create_engine, event, exc, pool, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.orm import Session

from apps.config import DatabaseConfig
from storage.errors import PoolClosed, PoolExhausted, RecordStoreError
from storage.relational.credentials import CredentialProvider
from storage.relational.models import bootstrap_schema

_LAST_CHECKIN = "last_checkin"


class ConnectionPoolManager:
    """
    Owns a bounded set of database connections.

    The ceiling is ``config.pool_size`` with no overflow. Excess acquisitions
    wait up to ``config.pool_timeout`` seconds (forever when it is None), or
    fail straight away when ``config.wait_for_connections`` is off.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        credentials: Optional[CredentialProvider] = None,
    ):
        self.config = config
        self._credentials = credentials
        self._engine: Optional[Engine] = None

        # Reserved + checked-out connections; shutdown waits for this to hit zero
        self._in_flight = 0
        self._closed = False
        self._condition = threading.Condition()

        self._probe_thread: Optional[threading.Thread] = None
        self._probe_stop = threading.Event()

    # ==================== LIFECYCLE ====================

    def initialize(self) -> None:
        """Create the engine and register the pool event listeners."""
        if self._engine is not None:
            logger.warning("[POOL] Connection pool already initialized")
            return

        self._engine = self._create_engine()
        self._register_listeners(self._engine)

        auth = self._credentials.description if self._credentials else "URL credentials"
        logger.info(
            f"[POOL] Database pool created with {auth} "
            f"(limit={self.config.pool_size}, dialect={self._engine.dialect.name})"
        )

    def _create_engine(self) -> Engine:
        url = make_url(self.config.url)
        if self.config.user and not url.username:
            url = url.set(username=self.config.user)

        connect_args = {}
        if url.get_backend_name() == "sqlite":
            connect_args["check_same_thread"] = False

        timeout = self.config.pool_timeout if self.config.wait_for_connections else 0

        return create_engine(
            url,
            poolclass=pool.QueuePool,
            pool_size=self.config.pool_size,
            max_overflow=0,
            pool_timeout=timeout,
            pool_recycle=self.config.pool_recycle,
            pool_pre_ping=True,
            echo=self.config.echo,
            connect_args=connect_args,
        )

    def _register_listeners(self, engine: Engine) -> None:
        event.listen(engine, "do_connect", self._provide_credentials)
        event.listen(engine.pool, "connect", self._on_connect)
        event.listen(engine.pool, "checkout", self._on_checkout)
        event.listen(engine.pool, "checkin", self._on_checkin)
        event.listen(engine.pool, "invalidate", self._on_invalidate)

    def ensure_schema(self) -> bool:
        """Run the idempotent schema bootstrap on one pooled connection."""
        with self.connection() as connection:
            logger.info("[POOL] Successfully connected to database")
            return bootstrap_schema(connection)

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Refuse new acquisitions, wait for in-flight ones, then close everything.

        Returns:
            True when every connection came back before the drain timeout
        """
        if timeout is None:
            timeout = self.config.drain_timeout

        with self._condition:
            if self._closed:
                return True
            self._closed = True
            logger.info(f"[POOL] Draining {self._in_flight} in-flight connection(s)...")
            drained = self._condition.wait_for(lambda: self._in_flight == 0, timeout=timeout)

        if not drained:
            logger.warning(
                f"[POOL] Drain timed out after {timeout}s with "
                f"{self._in_flight} connection(s) still checked out"
            )

        self.stop_liveness_probe()

        if self._engine is not None:
            self._engine.dispose()
        logger.info("[POOL] All connections closed")
        return drained

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Connection pool not initialized. Call initialize() first.")
        return self._engine

    # ==================== ACQUIRE / RELEASE ====================

    def acquire(self) -> Connection:
        """
        Check a connection out of the pool.

        Raises:
            PoolClosed: shutdown has begun
            PoolExhausted: no connection became free before the timeout
            RecordStoreError: a new physical connection could not be opened
        """
        engine = self.engine

        with self._condition:
            if self._closed:
                raise PoolClosed("Connection pool is shutting down")
            self._in_flight += 1

        try:
            connection = engine.connect()
        except exc.TimeoutError as e:
            self._forget_one()
            logger.warning(f"[POOL] Pool exhausted (limit={self.config.pool_size}): {e}")
            raise PoolExhausted(
                f"No database connection available within {self.config.pool_timeout}s"
            ) from e
        except exc.SQLAlchemyError as e:
            self._forget_one()
            logger.error(f"[POOL] Could not open database connection: {e}")
            raise RecordStoreError(f"Database connection failed: {e}") from e
        except BaseException:
            self._forget_one()
            raise

        return connection

    def release(self, connection: Connection) -> None:
        """Return a connection to the pool."""
        try:
            connection.close()
        except Exception as e:
            logger.error(f"[POOL] Failed to return connection to pool: {e}")
        finally:
            self._forget_one()

    def _forget_one(self) -> None:
        with self._condition:
            self._in_flight -= 1
            self._condition.notify_all()

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Scoped acquisition: the connection is released on every exit path."""
        connection = self.acquire()
        try:
            yield connection
        finally:
            self.release(connection)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        ORM session on one pooled connection.

        Commits when the block exits cleanly, rolls back otherwise.
        """
        connection = self.acquire()
        session = Session(bind=connection, autoflush=False, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except Exception:
            try:
                session.rollback()
            except Exception as rollback_error:
                logger.error(f"[POOL] Rollback failed: {rollback_error}")
            raise
        finally:
            session.close()
            self.release(connection)

    # ==================== HEALTH ====================

    def check_liveness(self) -> bool:
        """Exercise one connection; log the outcome, never raise."""
        try:
            with self.connection() as connection:
                connection.execute(text("SELECT 1"))
            logger.debug("[POOL] Connection check successful")
            return True
        except Exception as e:
            logger.error(f"[POOL] Connection check failed: {e}")
            return False

    def health(self) -> Dict[str, Any]:
        """One pooled round-trip; returns pool statistics, raises on failure."""
        with self.connection() as connection:
            connection.execute(text("SELECT 1 AS health_check"))
            return self.status()

    def start_liveness_probe(self, interval: Optional[float] = None) -> None:
        if self._probe_thread is not None and self._probe_thread.is_alive():
            return

        interval = interval if interval is not None else self.config.liveness_interval
        if interval <= 0:
            logger.info("[POOL] Liveness probe disabled")
            return

        self._probe_stop.clear()
        self._probe_thread = threading.Thread(
            target=self._probe_loop,
            args=(interval,),
            name="db-liveness-probe",
            daemon=True,
        )
        self._probe_thread.start()
        logger.info(f"[POOL] Liveness probe running every {interval}s")

    def stop_liveness_probe(self) -> None:
        self._probe_stop.set()
        if self._probe_thread is not None:
            self._probe_thread.join(timeout=5)
            self._probe_thread = None

    def _probe_loop(self, interval: float) -> None:
        while not self._probe_stop.wait(interval):
            if self._closed:
                break
            self.check_liveness()

    def status(self) -> Dict[str, Any]:
        """Pool statistics for the health endpoint."""
        engine = self.engine
        queue_pool = engine.pool
        return {
            "dialect": engine.dialect.name,
            "connectionLimit": self.config.pool_size,
            "checkedOut": queue_pool.checkedout(),
            "idle": queue_pool.checkedin(),
            "waitForConnections": self.config.wait_for_connections,
            "closed": self._closed,
        }

    # ==================== POOL EVENTS ====================

    def _provide_credentials(self, dialect, conn_rec, cargs, cparams) -> None:
        # Invoked before every new physical connection; the secret is not kept
        if self._credentials is not None:
            cparams["password"] = self._credentials.get_secret()

    def _on_connect(self, dbapi_connection, connection_record) -> None:
        connection_record.info[_LAST_CHECKIN] = time.monotonic()
        logger.info(f"[POOL] New database connection established ({id(dbapi_connection):#x})")

    def _on_checkout(self, dbapi_connection, connection_record, connection_proxy) -> None:
        last_checkin = connection_record.info.get(_LAST_CHECKIN)
        if last_checkin is not None:
            idle_for = time.monotonic() - last_checkin
            if idle_for > self.config.idle_timeout:
                logger.info(
                    f"[POOL] Connection idle for {idle_for:.0f}s "
                    f"(keep-alive {self.config.idle_timeout:.0f}s), replacing it"
                )
                # The pool invalidates the connection and opens a fresh one
                raise exc.DisconnectionError("Connection exceeded idle keep-alive window")
        logger.debug(f"[POOL] Connection {id(dbapi_connection):#x} acquired from the pool")

    def _on_checkin(self, dbapi_connection, connection_record) -> None:
        connection_record.info[_LAST_CHECKIN] = time.monotonic()
        logger.debug(f"[POOL] Connection {id(dbapi_connection):#x} released back to the pool")

    def _on_invalidate(self, dbapi_connection, connection_record, exception) -> None:
        logger.warning(f"[POOL] Connection discarded: {exception}")
