from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy import create_engine
from app.core.config import settings

class Base(DeclarativeBase): pass

def make_engine(dsn: str, **kwargs):
    connect_args = {"check_same_thread": False} if dsn.startswith("sqlite") else {}
    return create_engine(dsn, pool_pre_ping=True, connect_args=connect_args, **kwargs)

def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

engine = make_engine(settings.POSTGRES_DSN)
SessionLocal = make_session_factory(engine)
