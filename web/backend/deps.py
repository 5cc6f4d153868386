import os
from contextlib import contextmanager
from pathlib import Path
from typing import AsyncGenerator

from video_jukebox.core.database import get_database_path, get_db_connection, init_database

_initialized: set[Path] = set()


def get_hub_database_path() -> Path:
    """Hub database location; JUKEBOX_HUB_DB overrides the data-dir default."""
    override = os.getenv("JUKEBOX_HUB_DB")
    return Path(override).expanduser() if override else get_database_path()


@contextmanager
def open_hub_db():
    """Open the hub database, creating its tables on first use."""
    db_path = get_hub_database_path()
    if db_path not in _initialized:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    with get_db_connection(db_path) as conn:
        if db_path not in _initialized:
            init_database(conn)
            _initialized.add(db_path)
        yield conn


async def get_db() -> AsyncGenerator:
    """FastAPI dependency for database connections."""
    with open_hub_db() as conn:
        yield conn
