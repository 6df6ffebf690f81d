"""Database session management"""
from fastapi import Depends
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from eventpay.models import Base
from eventpay.core.config import settings
from eventpay.db.store import SqlAlchemyPaymentStore

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database (create all tables)"""
    Base.metadata.create_all(bind=engine)


def get_store(db: Session = Depends(get_db)) -> SqlAlchemyPaymentStore:
    """Dependency: payment store bound to the request session"""
    return SqlAlchemyPaymentStore(db)
