import os
import re

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from core.config import settings


def _get_schema_and_clean_url(url: str) -> tuple[str, str]:
    """Extract schema from URL options and return (schema, clean_url).

    asyncpg doesn't support the 'options' URL parameter that sets search_path.
    We need to extract it and use server_settings instead.
    """
    # Match options=-csearch_path%3D{schema} or options=-c+search_path={schema}
    match = re.search(r"[?&]options=-c(?:\+|%20)?search_path(?:%3D|=)(\w+)", url, re.IGNORECASE)
    if match:
        schema = match.group(1)
        clean_url = re.sub(r"[?&]options=-c(?:\+|%20)?search_path(?:%3D|=)\w+", "", url)
        # Fix URL if we removed the first query param
        clean_url = re.sub(r"\?&", "?", clean_url)
        clean_url = re.sub(r"\?$", "", clean_url)
        return schema, clean_url

    env = os.getenv("ENVIRONMENT", "").lower()
    if env in ("dev", "staging", "prod"):
        return env, url

    return "public", url


def _engine_kwargs(url: str, schema: str) -> dict:
    """Driver-specific engine options (only asyncpg needs server_settings)."""
    if "+asyncpg" not in url:
        return {}
    # Pooler (pgbouncer transaction mode) compatibility
    return {
        "poolclass": NullPool,
        "connect_args": {
            "statement_cache_size": 0,
            "prepared_statement_name_func": lambda: "",
            "server_settings": {"search_path": f"{schema},public"},
        },
    }


_db_schema, _clean_db_url = _get_schema_and_clean_url(settings.DATABASE_URL)

engine = create_async_engine(
    _clean_db_url,
    echo=settings.DEBUG,
    **_engine_kwargs(_clean_db_url, _db_schema),
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_db():
    """Dependency that yields a database session for request scope."""
    async with async_session_factory() as session:
        yield session


def get_session_factory():
    """Dependency that returns the session factory.

    Chat handlers open one session per event, so they take the factory
    rather than a request-scoped session. Tests override this.
    """
    return async_session_factory
