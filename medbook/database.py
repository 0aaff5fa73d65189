from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from medbook.core import config


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    config.DATABASE_URL,
    echo=config.DATABASE_ECHO,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()


def init_schema() -> None:
    # Registers every table on Base.metadata before creating them.
    from medbook.models import absence, availability, consultation, review, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
