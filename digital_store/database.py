from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker

from digital_store.config import DATABASE_URL
from digital_store.exceptions import Conflict

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@contextmanager
def transaction(db, conflict=None):
    """Commit everything done inside the block, or nothing.

    With ``conflict`` given, a unique constraint tripped by a concurrent
    writer is reported as ``Conflict(conflict)``.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as err:
        db.rollback()
        if conflict is None:
            raise
        raise Conflict(conflict) from err
    except Exception:
        db.rollback()
        raise


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
