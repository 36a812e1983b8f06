from __future__ import annotations

import logging
import os

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.models.common import utcnow
from app.db.models.genealogy import REL_PRODUCED_FROM, SerialNumber
from app.db.models.material_queue import (
    MaterialQueueItem,
    QueueTransaction,
    QUEUE_FITUP,
    QUEUE_ROLLS,
    STATUS_CONSUMED,
    STATUS_PENDING,
)
from app.db.models.production import ProductionRecord
from app.db.models.reference import BarcodeCard, Operator, Product, Vendor, WorkCenter
from app.events.bus import publish
from services._crud import atomic
from services.genealogy.identity import find_or_create_node
from services.genealogy.ledger import append_edge

logger = logging.getLogger(__name__)

QUEUE_TXN_MAX_LIMIT = int(os.getenv("QUEUE_TXN_MAX_LIMIT", "100"))

CARD_PREFIX = "KC;"

ROLLS_FIELDS = ("product_id", "vendor_mill_id", "vendor_processor_id", "heat_number", "coil_number", "lot_number", "quantity")
FITUP_FIELDS = ("product_id", "vendor_head_id", "lot_number", "heat_number", "coil_slab_number", "card_code")


def strip_card_prefix(card_id: str) -> str:
    return card_id[len(CARD_PREFIX):] if card_id.upper().startswith(CARD_PREFIX) else card_id


def _get_work_center(db: Session, work_center_id: str) -> WorkCenter:
    wc = db.get(WorkCenter, work_center_id)
    if wc is None:
        raise NotFoundError(f"work center {work_center_id} not found", field="work_center_id")
    return wc


def _get_queue_work_center(db: Session, work_center_id: str) -> WorkCenter:
    wc = _get_work_center(db, work_center_id)
    if wc.queue_type not in (QUEUE_ROLLS, QUEUE_FITUP):
        raise ValidationError(f"work center {wc.name} has no material queue", field="work_center_id")
    return wc


def _lock_queue(db: Session, work_center_id: str) -> None:
    """Serialize queue mutations of one work center.

    Bumping the version is the first write of the transaction: PostgreSQL holds
    the row lock and SQLite the writer lock until commit, so "read max/min
    position then write" cannot interleave for the same work center.
    """
    res = db.execute(
        update(WorkCenter)
        .where(WorkCenter.id == work_center_id)
        .values(queue_version=WorkCenter.queue_version + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        raise NotFoundError(f"work center {work_center_id} not found", field="work_center_id")


def _operator_name(db: Session, operator_id: str | None) -> str:
    if not operator_id:
        return ""
    op = db.get(Operator, operator_id)
    if op is None:
        raise ValidationError(f"operator {operator_id} not found", field="operator_id")
    return op.display_name


def _log_txn(db: Session, wc_id: str, action: str, summary: str, operator_name: str) -> None:
    db.add(QueueTransaction(
        work_center_id=wc_id,
        action=action,
        item_summary=summary[:256],
        operator_name=operator_name,
        timestamp=utcnow(),
    ))


def _blank(v) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def _clean(details: dict, fields: tuple[str, ...]) -> dict:
    out = {}
    for k in fields:
        v = details.get(k)
        if isinstance(v, str):
            v = v.strip() or None
        out[k] = v
    return out


def _require_product(db: Session, product_id, system_type: str) -> Product:
    if _blank(product_id):
        raise ValidationError("product_id required", field="product_id")
    product = db.get(Product, product_id)
    if product is None:
        raise ValidationError(f"product {product_id} not found", field="product_id")
    if product.system_type != system_type:
        raise ValidationError(f"product {product.product_number} is not a {system_type} product", field="product_id")
    return product


def _check_vendor(db: Session, vendor_id, vendor_type: str, field: str) -> Vendor | None:
    if _blank(vendor_id):
        return None
    vendor = db.get(Vendor, vendor_id)
    if vendor is None or not vendor.is_active:
        raise ValidationError(f"vendor {vendor_id} not found", field=field)
    if vendor.vendor_type != vendor_type:
        raise ValidationError(f"vendor {vendor.name} is not a {vendor_type} vendor", field=field)
    return vendor


def validate_details(db: Session, queue_type: str, details: dict) -> dict:
    """Check an item against the rules of its queue subtype.

    Returns the cleaned field dict plus the resolved ``product``.
    """
    if queue_type == QUEUE_ROLLS:
        d = _clean(details, ROLLS_FIELDS)
        d["product"] = _require_product(db, d["product_id"], "plate")
        _check_vendor(db, d["vendor_mill_id"], "mill", "vendor_mill_id")
        _check_vendor(db, d["vendor_processor_id"], "processor", "vendor_processor_id")
        for f in ("heat_number", "coil_number"):
            if _blank(d[f]):
                raise ValidationError(f"{f} required", field=f)
        qty = d["quantity"]
        if qty is None or int(qty) <= 0:
            raise ValidationError("quantity must be > 0", field="quantity")
        d["quantity"] = int(qty)
        return d

    d = _clean(details, FITUP_FIELDS)
    d["product"] = _require_product(db, d["product_id"], "head")
    if _blank(d["vendor_head_id"]):
        raise ValidationError("vendor_head_id required", field="vendor_head_id")
    vendor = _check_vendor(db, d["vendor_head_id"], "head", "vendor_head_id")
    if vendor.is_lot_tracked:
        if _blank(d["lot_number"]):
            raise ValidationError(f"lot_number required for {vendor.name} heads", field="lot_number")
    elif _blank(d["heat_number"]):
        raise ValidationError(f"heat_number required for {vendor.name} heads", field="heat_number")
    if _blank(d["card_code"]):
        raise ValidationError("card_code required", field="card_code")
    d["card_code"] = strip_card_prefix(d["card_code"])
    d["quantity"] = 1
    return d


def _material_serial(queue_type: str, d: dict) -> str:
    if queue_type == QUEUE_FITUP:
        if d.get("lot_number"):
            return f"Lot {d['lot_number']}"
        coil = d.get("coil_slab_number")
        return f"Heat {d['heat_number']}" + (f" Coil {coil}" if coil else "")
    return f"Heat {d['heat_number']} Coil {d['coil_number']}"


def _describe(queue_type: str, d: dict, quantity: int, card_id: str | None) -> str:
    product_desc = d["product"].product_number
    if queue_type == QUEUE_FITUP:
        ident = f"Lot {d['lot_number']}" if d.get("lot_number") else f"Heat {d['heat_number']}"
        return f"{product_desc} - {ident} - Card {card_id}"
    return f"{product_desc} - Heat {d['heat_number']} Coil {d['coil_number']} - Qty {quantity}"


def _bind_node(db: Session, wc: WorkCenter, queue_type: str, d: dict, operator_id: str | None) -> SerialNumber:
    return find_or_create_node(
        db,
        serial=_material_serial(queue_type, d),
        plant_id=wc.plant_id,
        product_id=d["product"].id,
        mill_vendor_id=d.get("vendor_mill_id"),
        processor_vendor_id=d.get("vendor_processor_id"),
        heads_vendor_id=d.get("vendor_head_id"),
        heat_number=d.get("heat_number"),
        coil_number=d.get("coil_number") if queue_type == QUEUE_ROLLS else d.get("coil_slab_number"),
        lot_number=d.get("lot_number"),
        created_by=operator_id,
    )


def _ensure_card_free(db: Session, card_id: str, *, exclude_item_id: str | None = None) -> None:
    q = db.query(MaterialQueueItem).filter(
        MaterialQueueItem.card_id.in_([card_id, CARD_PREFIX + card_id]),
        MaterialQueueItem.status == STATUS_PENDING,
    )
    if exclude_item_id:
        q = q.filter(MaterialQueueItem.id != exclude_item_id)
    if q.first() is not None:
        raise ConflictError(f"card {card_id} is already assigned to a pending queue entry", field="card_code")


def _card_color(db: Session, card_id: str | None) -> str | None:
    if not card_id:
        return None
    card = db.query(BarcodeCard).filter(BarcodeCard.card_value == strip_card_prefix(card_id)).first()
    return card.color if card else None


def enqueue(db: Session, work_center_id: str, details: dict, *, operator_id: str | None = None) -> MaterialQueueItem:
    """Append an item to the end of a work center's material queue."""
    with atomic(db):
        wc = _get_queue_work_center(db, work_center_id)
        d = validate_details(db, wc.queue_type, details)
        operator_name = _operator_name(db, operator_id)

        _lock_queue(db, wc.id)
        card_id = d.get("card_code")
        if card_id:
            _ensure_card_free(db, card_id)

        node = _bind_node(db, wc, wc.queue_type, d, operator_id)
        max_pos = (
            db.query(func.max(MaterialQueueItem.position))
            .filter(MaterialQueueItem.work_center_id == wc.id)
            .scalar()
        ) or 0
        item = MaterialQueueItem(
            work_center_id=wc.id,
            position=max_pos + 1,
            status=STATUS_PENDING,
            queue_type=wc.queue_type,
            description=_describe(wc.queue_type, d, d["quantity"], card_id),
            card_id=card_id,
            card_color=_card_color(db, card_id),
            serial_number_id=node.id,
            quantity=d["quantity"],
            quantity_completed=0,
            operator_id=operator_id,
            created_at=utcnow(),
        )
        db.add(item)
        _log_txn(db, wc.id, "added", item.description, operator_name)
        db.flush()
    logger.info("queued %s at %s position %d", item.description, wc.name, item.position)
    return item


def advance_summary(item: MaterialQueueItem) -> dict:
    sn = item.serial_number
    product = sn.product if sn else None
    return {
        "item_id": item.id,
        "position": item.position,
        "queue_type": item.queue_type,
        "shell_size": str(product.tank_size) if product else "",
        "heat_number": (sn.heat_number if sn else None) or "",
        "coil_number": (sn.coil_number if sn else None) or "",
        "lot_number": sn.lot_number if sn else None,
        "serial_number": sn.serial if sn else None,
        "quantity": item.quantity,
        "quantity_completed": item.quantity_completed,
        "product_description": product.product_number if product else "",
        "card_code": item.card_id,
        "card_color": item.card_color,
    }


def _running_rolls_items(db: Session, wc_id: str) -> list[MaterialQueueItem]:
    return (
        db.query(MaterialQueueItem)
        .filter(
            MaterialQueueItem.work_center_id == wc_id,
            MaterialQueueItem.queue_type == QUEUE_ROLLS,
            MaterialQueueItem.status == STATUS_CONSUMED,
            MaterialQueueItem.retired_at.is_(None),
        )
        .order_by(MaterialQueueItem.position.desc())
        .all()
    )


def _retire(db: Session, item: MaterialQueueItem, operator_name: str) -> None:
    item.retired_at = utcnow()
    product_desc = item.serial_number.product.product_number if item.serial_number and item.serial_number.product else ""
    _log_txn(db, item.work_center_id, "completed",
             f"{product_desc} - Qty {item.quantity_completed}/{item.quantity}", operator_name)


def advance(db: Session, work_center_id: str, *, operator_id: str | None = None) -> dict | None:
    """Consume the lowest-position pending item.

    Returns its summary, or None when nothing is pending so the caller can fall
    back to manual entry.
    """
    with atomic(db):
        _lock_queue(db, work_center_id)
        wc = _get_work_center(db, work_center_id)
        operator_name = _operator_name(db, operator_id)
        item = (
            db.query(MaterialQueueItem)
            .filter(MaterialQueueItem.work_center_id == wc.id, MaterialQueueItem.status == STATUS_PENDING)
            .order_by(MaterialQueueItem.position.asc())
            .first()
        )
        if item is None:
            return None

        if item.queue_type == QUEUE_ROLLS:
            # the material on the rolls before this one is finished
            for running in _running_rolls_items(db, wc.id):
                _retire(db, running, operator_name)

        item.status = STATUS_CONSUMED
        item.consumed_at = utcnow()
        if operator_id:
            item.operator_id = operator_id
        _log_txn(db, wc.id, "advanced", item.description, operator_name)
        summary = advance_summary(item)
        publish(db, "material_queue.advanced", {"work_center_id": wc.id, "item_id": item.id, "position": item.position})
    logger.info("advanced %s to item %s (position %d)", wc.name, item.id, item.position)
    return summary


def _get_pending_item(db: Session, wc_id: str, item_id: str) -> MaterialQueueItem:
    item = (
        db.query(MaterialQueueItem)
        .filter(MaterialQueueItem.id == item_id, MaterialQueueItem.work_center_id == wc_id)
        .first()
    )
    if item is None:
        raise NotFoundError(f"queue item {item_id} not found", field="item_id")
    if item.status != STATUS_PENDING:
        raise ConflictError(f"queue item {item_id} was already consumed")
    return item


def _item_details(item: MaterialQueueItem) -> dict:
    sn = item.serial_number
    if item.queue_type == QUEUE_FITUP:
        return {
            "product_id": sn.product_id if sn else None,
            "vendor_head_id": sn.heads_vendor_id if sn else None,
            "lot_number": sn.lot_number if sn else None,
            "heat_number": sn.heat_number if sn else None,
            "coil_slab_number": sn.coil_number if sn else None,
            "card_code": item.card_id,
        }
    return {
        "product_id": sn.product_id if sn else None,
        "vendor_mill_id": sn.mill_vendor_id if sn else None,
        "vendor_processor_id": sn.processor_vendor_id if sn else None,
        "heat_number": sn.heat_number if sn else None,
        "coil_number": sn.coil_number if sn else None,
        "lot_number": sn.lot_number if sn else None,
        "quantity": item.quantity,
    }


def update_item(db: Session, work_center_id: str, item_id: str, patch: dict, *, operator_id: str | None = None) -> MaterialQueueItem:
    """Edit a pending item. Identity fields re-bind the item to a matching node."""
    with atomic(db):
        _lock_queue(db, work_center_id)
        operator_name = _operator_name(db, operator_id)
        item = _get_pending_item(db, work_center_id, item_id)
        wc = _get_work_center(db, work_center_id)

        merged = _item_details(item)
        merged.update({k: v for k, v in (patch or {}).items() if v is not None and k in merged})
        d = validate_details(db, item.queue_type, merged)

        card_id = d.get("card_code")
        if card_id and card_id != item.card_id:
            _ensure_card_free(db, card_id, exclude_item_id=item.id)
            item.card_id = card_id
            item.card_color = _card_color(db, card_id)

        node = _bind_node(db, wc, item.queue_type, d, operator_id)
        item.serial_number_id = node.id
        item.serial_number = node
        item.quantity = d["quantity"]
        item.description = _describe(item.queue_type, d, item.quantity, item.card_id)
        _log_txn(db, wc.id, "updated", item.description, operator_name)
        db.flush()
    return item


def delete_item(db: Session, work_center_id: str, item_id: str, *, operator_id: str | None = None) -> None:
    with atomic(db):
        _lock_queue(db, work_center_id)
        operator_name = _operator_name(db, operator_id)
        item = _get_pending_item(db, work_center_id, item_id)
        _log_txn(db, work_center_id, "removed", item.description, operator_name)
        db.delete(item)
    logger.info("removed queue item %s from work center %s", item_id, work_center_id)


def list_queue(
    db: Session,
    work_center_id: str,
    *,
    status: str | None = STATUS_PENDING,
    queue_type: str | None = None,
) -> list[MaterialQueueItem]:
    _get_work_center(db, work_center_id)
    q = db.query(MaterialQueueItem).filter(MaterialQueueItem.work_center_id == work_center_id)
    if status:
        q = q.filter(MaterialQueueItem.status == status.upper())
    if queue_type:
        q = q.filter(MaterialQueueItem.queue_type == queue_type)
    return q.order_by(MaterialQueueItem.position.asc()).all()


def list_transactions(db: Session, work_center_id: str, *, limit: int = 5) -> list[QueueTransaction]:
    _get_work_center(db, work_center_id)
    limit = max(1, min(int(limit), QUEUE_TXN_MAX_LIMIT))
    return (
        db.query(QueueTransaction)
        .filter(QueueTransaction.work_center_id == work_center_id)
        .order_by(QueueTransaction.timestamp.desc())
        .limit(limit)
        .all()
    )


def lookup_card(db: Session, card_id: str) -> dict:
    """What a scanned kanban card currently stands for."""
    card_id = strip_card_prefix(card_id)
    item = (
        db.query(MaterialQueueItem)
        .filter(
            MaterialQueueItem.status == STATUS_PENDING,
            MaterialQueueItem.card_id.in_([card_id, CARD_PREFIX + card_id]),
        )
        .first()
    )
    if item is not None:
        sn = item.serial_number
        product = sn.product if sn else None
        return {
            "heat_number": (sn.heat_number if sn else None) or "",
            "coil_number": (sn.coil_number if sn else None) or "",
            "lot_number": sn.lot_number if sn else None,
            "product_description": product.product_number if product else "",
            "card_color": item.card_color or _card_color(db, item.card_id),
            "tank_size": product.tank_size if product else None,
        }
    card = db.query(BarcodeCard).filter(BarcodeCard.card_value == strip_card_prefix(card_id)).first()
    if card is None:
        raise NotFoundError(f"card {card_id} not found", field="card_id")
    return {
        "heat_number": "",
        "coil_number": "",
        "lot_number": None,
        "product_description": "",
        "card_color": card.color,
        "tank_size": None,
    }


def _shell_product_for(db: Session, plate: Product | None, product_id: str | None) -> Product:
    if product_id:
        product = db.get(Product, product_id)
        if product is None or product.system_type != "shell":
            raise ValidationError(f"product {product_id} is not a shell product", field="product_id")
        return product
    if plate is not None:
        product = (
            db.query(Product)
            .filter(Product.system_type == "shell", Product.tank_size == plate.tank_size, Product.is_active == True)  # noqa: E712
            .order_by(Product.product_number.asc())
            .first()
        )
        if product is not None:
            return product
    raise ValidationError("no shell product matches the running material", field="product_id")


def record_completion(
    db: Session,
    work_center_id: str,
    *,
    serial: str | None = None,
    product_id: str | None = None,
    operator_id: str | None = None,
    production_line_id: str | None = None,
) -> dict:
    """Count one unit off the material currently on the rolls.

    With ``serial`` the rolled shell is registered as produced from the running
    plate. The item retires once its declared quantity is reached.
    """
    with atomic(db):
        wc = _get_work_center(db, work_center_id)
        if wc.queue_type != QUEUE_ROLLS:
            raise ValidationError(f"work center {wc.name} does not run a rolls queue", field="work_center_id")
        operator_name = _operator_name(db, operator_id)
        _lock_queue(db, wc.id)
        running = _running_rolls_items(db, wc.id)
        if not running:
            raise ConflictError(f"no material is running at {wc.name}")
        item = running[0]
        plate = item.serial_number

        shell = None
        if serial:
            shell_product = _shell_product_for(db, plate.product if plate else None, product_id)
            shell = find_or_create_node(
                db,
                serial=serial,
                plant_id=wc.plant_id,
                product_id=shell_product.id,
                heat_number=plate.heat_number if plate else None,
                coil_number=plate.coil_number if plate else None,
                created_by=operator_id,
            )
            now = utcnow()
            record = ProductionRecord(
                serial_number_id=shell.id,
                work_center_id=wc.id,
                production_line_id=production_line_id,
                operator_id=operator_id,
                record_type="Rolls",
                timestamp=now,
            )
            db.add(record)
            db.flush()
            if plate is not None:
                append_edge(
                    db,
                    kind=REL_PRODUCED_FROM,
                    from_sn_id=plate.id,
                    to_sn_id=shell.id,
                    quantity=1,
                    production_record_id=record.id,
                    timestamp=now,
                )

        item.quantity_completed += 1
        if item.quantity_completed >= item.quantity:
            _retire(db, item, operator_name)
        result = advance_summary(item)
        result["retired"] = item.retired_at is not None
        result["shell_serial"] = shell.serial if shell else None
    return result
