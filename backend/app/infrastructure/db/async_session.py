from collections.abc import AsyncGenerator
from time import perf_counter

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.infrastructure.observability.metrics import observe_db_query


def _engine_options(database_uri: str) -> dict:
    options: dict = {"pool_pre_ping": True, "echo": settings.db_echo}
    if make_url(database_uri).get_backend_name() != "sqlite":
        options["pool_size"] = settings.db_pool_size
        options["max_overflow"] = settings.db_max_overflow
        options["pool_timeout"] = settings.db_pool_timeout_seconds
    return options


def _statement_kind(statement: str) -> str:
    verb = statement.lstrip().split(" ", 1)[0].lower()
    return verb if verb in {"select", "insert", "update", "delete"} else "other"


def instrument_engine(engine: AsyncEngine) -> AsyncEngine:
    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_started_at_stack", []).append(perf_counter())

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        stack = conn.info.get("query_started_at_stack", [])
        if not stack:
            return
        observe_db_query(perf_counter() - stack.pop(-1), operation=_statement_kind(statement))

    return engine


async_engine = instrument_engine(
    create_async_engine(settings.sqlalchemy_database_uri, **_engine_options(settings.sqlalchemy_database_uri))
)
AsyncSessionLocal = async_sessionmaker(bind=async_engine, expire_on_commit=False, autoflush=False)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as db:
        yield db


async def dispose_async_engine() -> None:
    await async_engine.dispose()
