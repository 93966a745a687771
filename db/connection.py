"""
ECG System - Database connection
Engine and ORM session factory for the session store
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def _is_memory_url(url: str) -> bool:
    return url in ('sqlite://', 'sqlite:///:memory:') or url.endswith(':memory:')


def get_db_connection(url: str, echo: bool = False):
    """
    Create an engine and a bound ORM session.

    SQLite connections may be used from worker threads (the capture pipeline
    writes sessions from an executor); in-memory databases share one
    connection so every thread sees the same data.

    Args:
        url:  SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        (engine, session)
    """
    kwargs = {'echo': echo}
    if url.startswith('sqlite'):
        kwargs['connect_args'] = {'check_same_thread': False}
        if _is_memory_url(url):
            kwargs['poolclass'] = StaticPool

    engine = create_engine(url, **kwargs)
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    logger.debug(f"Database engine created for {url.split('://')[0]}")
    return engine, session
