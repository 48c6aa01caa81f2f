"""Activity ledger. SQLite by default; set DATABASE_URL or MYSQL_* for MySQL.
Startup ensures the table exists; on connection failure logs verbosely and falls back to SQLite or in-memory so the app can start."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from converter import config as app_config
from converter.conversion.models import ConversionResult

logger = logging.getLogger("converter.db")

_engine: Optional[Engine] = None

metadata = MetaData()

activities = Table(
    "conversion_activities",
    metadata,
    Column("id", BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
    Column("session_id", String(255), nullable=False, index=True),
    Column("filename", String(512)),
    Column("category", String(20), nullable=False),
    Column("lane", String(20)),
    Column("status", String(20), nullable=False),
    Column("input_bytes", BigInteger, nullable=False, default=0),
    Column("output_bytes", BigInteger, nullable=False, default=0),
    Column("output_count", Integer, nullable=False, default=0),
    Column("error", Text),
    Column("created_at", String(50), nullable=False),
    Column("duration_seconds", Float),
)


def _is_sqlite() -> bool:
    return app_config.DATABASE_URL.startswith("sqlite")


def _is_mysql() -> bool:
    return "mysql" in app_config.DATABASE_URL


def _db_kind() -> str:
    if _is_mysql():
        return "MySQL"
    if _is_sqlite():
        return "SQLite"
    return app_config.DATABASE_URL.split(":", 1)[0]


def _create_engine(url: str) -> Engine:
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every thread sees its own empty database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(url, **kwargs)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = _create_engine(app_config.DATABASE_URL)
        logger.info("Database engine created (%s)", _db_kind())
    return _engine


def reset_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def _ensure_tables(engine: Engine) -> None:
    metadata.create_all(engine)
    logger.info("Required tables ensured: %s", ", ".join(metadata.tables))


def init_db() -> None:
    """Prepare database at startup. On failure, fall back to a SQLite file, then in-memory SQLite."""
    kind = _db_kind()
    logger.info("Database init: preparing %s", kind)

    try:
        _ensure_tables(get_engine())
        logger.info("Database ready: %s", kind)
        return
    except OperationalError as e:
        logger.warning("Database connection failed (%s): %s. Will try fallback.", kind, e.orig, exc_info=True)
        if not _is_sqlite():
            try:
                sqlite_path = app_config.BASE_DIR / "data" / "converter.db"
                sqlite_path.parent.mkdir(parents=True, exist_ok=True)
                app_config.DATABASE_URL = f"sqlite:///{sqlite_path}"
                reset_engine()
                _ensure_tables(get_engine())
                logger.warning("%s unavailable. Using SQLite at %s.", kind, sqlite_path)
                return
            except Exception as fallback_err:
                logger.exception("SQLite file fallback failed: %s. Trying in-memory SQLite.", fallback_err)
    except Exception as e:
        logger.exception("Database init failed: %s. Trying in-memory SQLite.", e)

    # Last resort: the ledger will not persist across restarts
    app_config.DATABASE_URL = "sqlite://"
    reset_engine()
    _ensure_tables(get_engine())
    logger.warning("Database unavailable. Using in-memory SQLite. Activity history will not persist across restarts.")


@contextmanager
def session():
    with get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_activity(
    session_id: str,
    result: ConversionResult,
    category: str,
    *,
    duration_seconds: Optional[float] = None,
) -> None:
    """One row per file outcome."""
    with session() as conn:
        conn.execute(
            insert(activities).values(
                session_id=session_id,
                filename=result.name,
                category=category,
                lane=result.lane.value if result.lane else None,
                status=result.status.value,
                input_bytes=result.original_size,
                output_bytes=result.output_size,
                output_count=len(result.processed_files),
                error=result.error,
                created_at=_now_iso(),
                duration_seconds=duration_seconds,
            )
        )


def record_results(
    session_id: str,
    results: list[ConversionResult],
    category: str,
    duration_seconds: Optional[float] = None,
) -> None:
    """Ledger writes never fail a request."""
    per_file = duration_seconds / len(results) if duration_seconds and results else None
    for result in results:
        try:
            record_activity(session_id, result, category, duration_seconds=per_file)
        except Exception as e:
            logger.warning("Could not record activity for %s: %s", result.name, e)


def get_session_stats(session_id: str) -> dict:
    """Totals for a session plus overall compression percent."""
    stmt = select(
        func.count(),
        func.coalesce(func.sum(activities.c.output_count), 0),
        func.coalesce(func.sum(activities.c.input_bytes), 0),
        func.coalesce(func.sum(activities.c.output_bytes), 0),
        func.coalesce(func.sum(activities.c.duration_seconds), 0),
        func.coalesce(func.sum(case((activities.c.status == "error", 1), else_=0)), 0),
    ).where(activities.c.session_id == session_id)
    with get_engine().connect() as conn:
        row = conn.execute(stmt).fetchone()
    files, outputs, total_input, total_output, time_spent, failed = (row or (0, 0, 0, 0, 0, 0))
    compression_percent = 0.0
    if total_input and total_input > 0:
        compression_percent = round((1.0 - int(total_output) / int(total_input)) * 100.0, 1)
    return {
        "files_processed": int(files),
        "files_failed": int(failed or 0),
        "files_output": int(outputs),
        "total_input_bytes": int(total_input),
        "total_output_bytes": int(total_output),
        "compression_percent": compression_percent,
        "time_spent_seconds": float(time_spent),
    }


def get_session_activities(session_id: str, limit: int = 100) -> list[dict]:
    """Recent activities for the session, newest first."""
    stmt = (
        select(
            activities.c.filename,
            activities.c.category,
            activities.c.lane,
            activities.c.status,
            activities.c.input_bytes,
            activities.c.output_bytes,
            activities.c.output_count,
            activities.c.error,
            activities.c.created_at,
            activities.c.duration_seconds,
        )
        .where(activities.c.session_id == session_id)
        .order_by(activities.c.created_at.desc(), activities.c.id.desc())
        .limit(limit)
    )
    with get_engine().connect() as conn:
        rows = conn.execute(stmt).mappings().all()
    return [dict(r) for r in rows]
