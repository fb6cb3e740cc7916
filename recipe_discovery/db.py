from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def make_engine(db_url: str):
    kwargs = {}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # One shared connection, otherwise every session sees an empty database
        if db_url in IN_MEMORY_URLS:
            kwargs["poolclass"] = StaticPool
    return create_engine(db_url, **kwargs)


def make_session_factory(engine):
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine) -> None:
    # models must be imported so their tables are registered on Base
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
