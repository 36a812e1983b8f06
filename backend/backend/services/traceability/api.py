from __future__ import annotations
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from services.traceability import service

router = APIRouter(prefix="/serial-numbers", tags=["traceability"])


@router.get("/{serial}/context")
def serial_context(serial: str, plant_id: str | None = None, db: Session = Depends(get_db)):
    return service.get_context(db, serial, plant_id=plant_id)


@router.get("/{serial}/lookup")
def serial_lookup(serial: str, plant_id: str | None = None, db: Session = Depends(get_db)):
    return service.get_lookup(db, serial, plant_id=plant_id)
