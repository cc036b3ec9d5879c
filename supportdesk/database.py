from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from supportdesk.config import settings

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create missing tables. Migrations are managed outside the app."""
    import supportdesk.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
