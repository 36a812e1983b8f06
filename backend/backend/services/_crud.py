from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.errors import InternalError

@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Run the block as one unit of work: commit at the end, roll back on any error."""
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise InternalError(f"persistence failure: {e.__class__.__name__}") from e
    except Exception:
        db.rollback()
        raise
