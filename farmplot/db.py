# farmplot/db.py
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from farmplot.config import settings

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(
    settings.database_url,
    connect_args=_connect_args,
    echo=settings.sql_echo,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# FastAPI dep
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create missing tables. Schema migrations are not handled here."""
    # models must be imported so their tables are registered on Base
    from farmplot import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def check_db_connection(db: Session | None = None) -> bool:
    session = db or SessionLocal()
    try:
        session.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error("Database connection error: %s", e)
        return False
    finally:
        if db is None:
            session.close()
