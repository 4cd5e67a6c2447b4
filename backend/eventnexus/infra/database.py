import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine

from eventnexus.infra.db.tables import metadata


def resolve_engine(engine: Optional[Engine] = None, database_url: Optional[str] = None) -> Engine:
    """Engine passed in, else one built from ``database_url`` or DATABASE_URL; schema created."""
    if engine is None:
        if database_url is None:
            database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL required if engine not provided")
        engine = create_engine(database_url, future=True)
    metadata.create_all(engine)
    return engine


def display_url(url: URL) -> str:
    """Connection URL safe for logs, password masked."""
    return url.render_as_string(hide_password=True)

