from __future__ import annotations
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models.material_queue import MaterialQueueItem, QueueTransaction
from services.material_queue import service

router = APIRouter(prefix="/workcenters", tags=["material-queue"])
card_router = APIRouter(prefix="/material-queue", tags=["material-queue"])


class QueueItemIn(BaseModel):
    product_id: str | None = None
    vendor_mill_id: str | None = None
    vendor_processor_id: str | None = None
    vendor_head_id: str | None = None
    heat_number: str | None = None
    coil_number: str | None = None
    coil_slab_number: str | None = None
    lot_number: str | None = None
    card_code: str | None = None
    quantity: int | None = None
    operator_id: str | None = None


class OperatorIn(BaseModel):
    operator_id: str | None = None


class CompletionIn(BaseModel):
    serial: str | None = None
    product_id: str | None = None
    operator_id: str | None = None
    production_line_id: str | None = None


def _item_out(item: MaterialQueueItem) -> dict:
    sn = item.serial_number
    return {
        "id": item.id,
        "work_center_id": item.work_center_id,
        "position": item.position,
        "status": item.status,
        "queue_type": item.queue_type,
        "description": item.description,
        "card_id": item.card_id,
        "card_color": item.card_color,
        "serial_number_id": item.serial_number_id,
        "serial_number": sn.serial if sn else None,
        "heat_number": sn.heat_number if sn else None,
        "coil_number": sn.coil_number if sn else None,
        "lot_number": sn.lot_number if sn else None,
        "quantity": item.quantity,
        "quantity_completed": item.quantity_completed,
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "consumed_at": item.consumed_at.isoformat() if item.consumed_at else None,
    }


def _txn_out(t: QueueTransaction) -> dict:
    return {
        "id": t.id,
        "action": t.action,
        "item_summary": t.item_summary,
        "operator_name": t.operator_name,
        "timestamp": t.timestamp.isoformat(),
    }


@router.get("/{work_center_id}/material-queue")
def list_queue(work_center_id: str, status: str | None = "PENDING", queue_type: str | None = None,
               db: Session = Depends(get_db)):
    items = service.list_queue(db, work_center_id, status=status, queue_type=queue_type)
    return [_item_out(i) for i in items]


@router.post("/{work_center_id}/material-queue", status_code=201)
def enqueue(work_center_id: str, payload: QueueItemIn, db: Session = Depends(get_db)):
    details = payload.model_dump(exclude={"operator_id"})
    item = service.enqueue(db, work_center_id, details, operator_id=payload.operator_id)
    return _item_out(item)


@router.put("/{work_center_id}/material-queue/{item_id}")
def update_item(work_center_id: str, item_id: str, payload: QueueItemIn, db: Session = Depends(get_db)):
    patch = payload.model_dump(exclude={"operator_id"}, exclude_none=True)
    item = service.update_item(db, work_center_id, item_id, patch, operator_id=payload.operator_id)
    return _item_out(item)


@router.delete("/{work_center_id}/material-queue/{item_id}", status_code=204)
def delete_item(work_center_id: str, item_id: str, operator_id: str | None = None, db: Session = Depends(get_db)):
    service.delete_item(db, work_center_id, item_id, operator_id=operator_id)
    return Response(status_code=204)


@router.post("/{work_center_id}/queue/advance")
def advance(work_center_id: str, payload: OperatorIn | None = None, db: Session = Depends(get_db)):
    summary = service.advance(db, work_center_id, operator_id=payload.operator_id if payload else None)
    if summary is None:
        return {"empty": True}
    return {"empty": False, **summary}


@router.post("/{work_center_id}/queue/complete")
def complete(work_center_id: str, payload: CompletionIn | None = None, db: Session = Depends(get_db)):
    payload = payload or CompletionIn()
    return service.record_completion(
        db,
        work_center_id,
        serial=payload.serial,
        product_id=payload.product_id,
        operator_id=payload.operator_id,
        production_line_id=payload.production_line_id,
    )


@router.get("/{work_center_id}/queue-transactions")
def queue_transactions(work_center_id: str, limit: int = 5, db: Session = Depends(get_db)):
    return [_txn_out(t) for t in service.list_transactions(db, work_center_id, limit=limit)]


@card_router.get("/card/{card_id}")
def card_lookup(card_id: str, db: Session = Depends(get_db)):
    return service.lookup_card(db, card_id)
