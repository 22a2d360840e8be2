from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from models import Base

engine = None

# Bound to an engine by init_engine() when the app is created.
# expire_on_commit=False keeps loaded rows readable after the session closes.
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)


def init_engine(db_url: str):
    """Create the engine for db_url, bind SessionLocal and create tables."""
    global engine

    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    engine = create_engine(db_url, echo=False, connect_args=connect_args)
    SessionLocal.configure(bind=engine)

    # Create tables if they don't exist
    Base.metadata.create_all(engine)
    return engine
