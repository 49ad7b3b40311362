"""
Startup connection reset.

After a crash the database server can keep sessions that the previous process
never closed, and those count against the account's connection limit. This
step connects with a separately configured, elevated credential, finds the
sessions owned by the application's user(s), and terminates them.

It is best-effort: every failure is logged as a warning and startup carries on.
"""

from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy import create_engine, pool, text
from sqlalchemy.engine import Connection


def _mysql_sessions(connection: Connection, users: List[str]) -> List[int]:
    rows = connection.execute(text("SHOW PROCESSLIST")).mappings().all()
    logger.info(f"[RESET] Found {len(rows)} active connections")
    own_id = connection.execute(text("SELECT CONNECTION_ID()")).scalar()
    return [
        int(row["Id"])
        for row in rows
        if row["User"] in users and int(row["Id"]) != own_id
    ]


def _mysql_kill(connection: Connection, session_id: int) -> None:
    connection.execute(text(f"KILL {int(session_id)}"))


def _postgres_sessions(connection: Connection, users: List[str]) -> List[int]:
    rows = connection.execute(
        text(
            "SELECT pid, usename FROM pg_stat_activity "
            "WHERE pid <> pg_backend_pid()"
        )
    ).mappings().all()
    logger.info(f"[RESET] Found {len(rows)} active connections")
    return [int(row["pid"]) for row in rows if row["usename"] in users]


def _postgres_kill(connection: Connection, session_id: int) -> None:
    connection.execute(text("SELECT pg_terminate_backend(:pid)"), {"pid": session_id})


def _mssql_sessions(connection: Connection, users: List[str]) -> List[int]:
    rows = connection.execute(
        text(
            "SELECT session_id, login_name FROM sys.dm_exec_sessions "
            "WHERE is_user_process = 1 AND session_id <> @@SPID"
        )
    ).mappings().all()
    logger.info(f"[RESET] Found {len(rows)} active connections")
    return [int(row["session_id"]) for row in rows if row["login_name"] in users]


def _mssql_kill(connection: Connection, session_id: int) -> None:
    connection.execute(text(f"KILL {int(session_id)}"))


# dialect name -> (enumerate sessions, terminate one session)
SESSION_STRATEGIES: Dict[str, tuple] = {
    "mysql": (_mysql_sessions, _mysql_kill),
    "mariadb": (_mysql_sessions, _mysql_kill),
    "postgresql": (_postgres_sessions, _postgres_kill),
    "mssql": (_mssql_sessions, _mssql_kill),
}


def reset_connections(
    admin_url: Optional[str],
    users: Iterable[str],
    engine_factory: Optional[Callable] = None,
) -> int:
    """
    Terminate server sessions owned by ``users`` using the elevated ``admin_url``.

    Args:
        admin_url: SQLAlchemy URL carrying the elevated credential
        users: Database account names whose sessions should be closed
        engine_factory: Override for ``create_engine`` (tests)

    Returns:
        Number of sessions terminated (0 when skipped or failed)
    """
    users = [u for u in users if u]
    if not admin_url:
        logger.info("[RESET] No admin URL configured, skipping connection reset")
        return 0
    if not users:
        logger.info("[RESET] No application users configured, skipping connection reset")
        return 0

    engine_factory = engine_factory or create_engine
    try:
        # Each kill commits on its own; one refused kill must not abort the rest
        engine = engine_factory(
            admin_url, poolclass=pool.NullPool, isolation_level="AUTOCOMMIT"
        )
    except Exception as e:
        logger.warning(f"[RESET] Could not create admin engine: {e}")
        return 0

    dialect = engine.dialect.name
    strategy = SESSION_STRATEGIES.get(dialect)
    if strategy is None:
        logger.info(f"[RESET] Connection reset not supported for '{dialect}', skipping")
        engine.dispose()
        return 0

    list_sessions, kill_session = strategy
    killed = 0
    try:
        with engine.connect() as connection:
            logger.info("[RESET] Connected to database for connection reset")
            try:
                session_ids = list_sessions(connection, users)
            except Exception as e:
                logger.warning(f"[RESET] Error listing sessions: {e}")
                return 0

            logger.info(f"[RESET] Killing {len(session_ids)} connections")
            for session_id in session_ids:
                try:
                    kill_session(connection, session_id)
                    killed += 1
                    logger.info(f"[RESET] Killed connection {session_id}")
                except Exception as e:
                    logger.warning(f"[RESET] Error killing connection {session_id}: {e}")
    except Exception as e:
        logger.warning(f"[RESET] Error connecting to database for reset: {e}")
    finally:
        engine.dispose()
        logger.info("[RESET] Reset connection closed")

    return killed
