from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

DEFAULT_TIMEOUT = 5.0


def normalize_url(url):
    # SQLAlchemy requires 'postgresql://', some providers give 'postgres://'
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def engine_options(url, timeout=DEFAULT_TIMEOUT):
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        # In-memory SQLite lives inside a single connection
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            options["poolclass"] = StaticPool
        return options

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        }
    return {"connect_args": connect_args, "pool_pre_ping": True, "pool_timeout": timeout}


def make_engine(url, timeout=DEFAULT_TIMEOUT):
    url = normalize_url(url)
    return create_engine(url, **engine_options(url, timeout))


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory):
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
