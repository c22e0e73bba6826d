import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def make_engine(database_url: str):
    """Build a SQLite engine; in-memory databases share one connection so every session sees the same data."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    db_path = database_url.replace("sqlite:///", "", 1)
    directory = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(directory, exist_ok=True)
    return create_engine(database_url, connect_args={"check_same_thread": False})


def make_session_factory(engine):
    # Import the models so they are registered in Base.metadata before create_all
    from llmchat.models import db_models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
