"""
Engine and session setup for the progression runner.

    from progression.database import get_session, init_db
    from progression.services.progression_runner import run_progression

    init_db()
    with get_session() as session:
        run_progression(session, tournament_id)

DATABASE_URL and SQL_ECHO are read from the environment (or a .env file).
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./progression.db"


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create an engine; file-backed SQLite databases get their directory created."""
    url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    if echo is None:
        echo = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")

    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" not in url:
            Path(url.replace("sqlite:///", "", 1)).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(url, echo=echo, connect_args=connect_args)


engine: Engine = build_engine()


@contextmanager
def get_session(bind: Optional[Engine] = None) -> Iterator[Session]:
    """One session per progression call; the runner commits or rolls back inside it."""
    with Session(bind or engine) as session:
        yield session


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the progression tables."""
    # Every table model must be imported before create_all
    from progression.models import Match, MatchEvent, Team, TeamRegistration, Tournament  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
