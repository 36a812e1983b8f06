from __future__ import annotations
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from services.assembly import service

router = APIRouter(prefix="/assemblies", tags=["assemblies"])


class AssemblyIn(BaseModel):
    shells: list[str] = Field(default_factory=list)
    left_head_lot_id: str | None = None
    right_head_lot_id: str | None = None
    tank_size: int
    work_center_id: str
    asset_id: str | None = None
    production_line_id: str
    operator_id: str
    welder_ids: list[str] = Field(default_factory=list)


class ReassemblyIn(BaseModel):
    shells: list[str] | None = None
    left_head_lot_id: str | None = None
    right_head_lot_id: str | None = None
    operator_id: str | None = None
    welder_ids: list[str] = Field(default_factory=list)
    plant_id: str | None = None


class HydroMarriageIn(BaseModel):
    sellable_serial: str
    work_center_id: str
    operator_id: str
    asset_id: str | None = None
    inspection_result: str | None = None
    plant_id: str | None = None


@router.post("", status_code=201)
def create_assembly(payload: AssemblyIn, db: Session = Depends(get_db)):
    return service.create_assembly(db, **payload.model_dump())


@router.get("/next-alpha-code")
def next_alpha_code(plant_id: str, db: Session = Depends(get_db)):
    return {"plant_id": plant_id, "alpha_code": service.next_alpha_code(db, plant_id)}


@router.post("/{alpha_code}/reassemble")
def reassemble(alpha_code: str, payload: ReassemblyIn, db: Session = Depends(get_db)):
    return service.reassemble(db, alpha_code, **payload.model_dump())


@router.post("/{alpha_code}/hydro-marriage", status_code=201)
def hydro_marriage(alpha_code: str, payload: HydroMarriageIn, db: Session = Depends(get_db)):
    return service.marry(db, alpha_code, **payload.model_dump())
