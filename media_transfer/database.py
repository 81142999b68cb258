from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from media_transfer.models import Base


def create_session_factory(database_url: str):
    """
    Create the engine for ``database_url`` and make sure the tables exist.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sessions are opened from the event loop and the uvicorn threadpool
        connect_args["check_same_thread"] = False
    engine = create_engine(database_url, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    return engine, SessionLocal
