# db.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import DATABASE_URL


def make_session_factory(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # sessions are handed across FastAPI's worker threads
        connect_args["check_same_thread"] = False
    engine = create_engine(url, connect_args=connect_args)
    return engine, sessionmaker(bind=engine, autoflush=False, autocommit=False)


engine, SessionLocal = make_session_factory(DATABASE_URL)


def init_db(bind) -> None:
    from models import Base

    Base.metadata.create_all(bind=bind)
