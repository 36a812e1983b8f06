from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import NotFoundError, ValidationError
from app.db.models.common import utcnow
from app.db.models.genealogy import Assembly, REL_COMPONENT, REL_REPLACES, SerialNumber
from app.db.models.material_queue import MaterialQueueItem, QUEUE_FITUP, STATUS_CONSUMED
from app.db.models.production import ProductionRecord, WelderLog
from app.db.models.reference import Asset, Operator, Product, ProductionLine, WorkCenter
from app.events.bus import publish
from services._crud import atomic
from services.genealogy.identity import (
    allocate_alpha_code,
    find_or_create_node,
    lock_plant,
    mark_replaced,
    peek_alpha_code,
    resolve_node,
)
from services.genealogy.ledger import (
    SLOT_ASSEMBLY,
    SLOT_HEAD_LEFT,
    SLOT_HEAD_RIGHT,
    append_edge,
    current_assembly_of,
    current_components,
    shell_slot,
)
from services.material_queue.service import strip_card_prefix

logger = logging.getLogger(__name__)


def _blank(v: str | None) -> bool:
    return v is None or not str(v).strip()


def _require(db: Session, model, obj_id: str | None, field: str, label: str):
    if _blank(obj_id):
        raise ValidationError(f"{field} required", field=field)
    obj = db.get(model, obj_id)
    if obj is None:
        raise ValidationError(f"{label} {obj_id} not found", field=field)
    return obj


def _check_welders(db: Session, welder_ids: list[str] | None) -> list[str]:
    out: list[str] = []
    for wid in welder_ids or []:
        _require(db, Operator, wid, "welder_ids", "welder")
        if wid not in out:
            out.append(wid)
    return out


def _resolve_shell(db: Session, serial: str, *, plant_id: str, tank_size: int, assembly_sn_id: str | None = None) -> SerialNumber:
    """A shell that may go into an assembly slot.

    ``assembly_sn_id`` lets a shell already held by that same assembly through
    (reassembly may move a shell between slots).
    """
    try:
        node = resolve_node(db, serial, plant_id=plant_id)
    except NotFoundError as e:
        raise ValidationError(f"shell {serial}: {e.message}", field="shells") from e
    product = node.product
    if product is None or product.system_type != "shell":
        raise ValidationError(f"{serial} is not a shell", field="shells")
    if product.tank_size != tank_size:
        raise ValidationError(f"shell {serial} is size {product.tank_size}, assembly is {tank_size}", field="shells")
    held = current_assembly_of(db, node.id, active_only=False)
    if held is not None and held[0].serial_number_id != assembly_sn_id:
        raise ValidationError(f"shell {serial} is already in assembly {held[0].alpha_code}", field="shells")
    return node


def _check_shell_list(shells: list[str] | None, *, required: bool) -> list[str]:
    if shells is None:
        if required:
            raise ValidationError("at least one shell required", field="shells")
        return []
    cleaned = [s.strip() if isinstance(s, str) else s for s in shells]
    if required and not cleaned:
        raise ValidationError("at least one shell required", field="shells")
    for s in cleaned:
        if _blank(s):
            raise ValidationError("shell serials must not be blank", field="shells")
    seen: set[str] = set()
    for s in cleaned:
        if s in seen:
            raise ValidationError(f"shell {s} listed twice", field="shells")
        seen.add(s)
    return cleaned


def resolve_head_lot(db: Session, lot_id: str, *, plant_id: str, field: str) -> SerialNumber:
    """Map a head lot id to the node of a fit-up draw that is still on the floor.

    A drawn lot feeds many tanks, so a fit-up draw stays available after it is
    bound into an assembly; only ``retired_at`` takes it off the floor. Nothing
    in the fit-up flow sets it today, which keeps every drawn lot of the plant
    selectable (newest draw first when ids collide).
    """
    lot_id = (lot_id or "").strip()
    if not lot_id:
        raise ValidationError(f"{field} required", field=field)
    item = (
        db.query(MaterialQueueItem)
        .join(SerialNumber, MaterialQueueItem.serial_number_id == SerialNumber.id)
        .join(WorkCenter, MaterialQueueItem.work_center_id == WorkCenter.id)
        .filter(
            WorkCenter.plant_id == plant_id,
            MaterialQueueItem.queue_type == QUEUE_FITUP,
            MaterialQueueItem.status == STATUS_CONSUMED,
            MaterialQueueItem.retired_at.is_(None),
            or_(
                SerialNumber.serial == lot_id,
                SerialNumber.lot_number == lot_id,
                SerialNumber.heat_number == lot_id,
                MaterialQueueItem.card_id == strip_card_prefix(lot_id),
            ),
        )
        .order_by(MaterialQueueItem.consumed_at.desc())
        .first()
    )
    if item is None:
        raise ValidationError(f"head lot {lot_id} has not been drawn at fit-up", field=field)
    return item.serial_number


def _assembled_product(db: Session, tank_size: int) -> Product:
    product = (
        db.query(Product)
        .filter(Product.system_type == "assembled", Product.tank_size == tank_size, Product.is_active == True)  # noqa: E712
        .order_by(Product.product_number.asc())
        .first()
    )
    if product is None:
        raise ValidationError(f"no assembled product for tank size {tank_size}", field="tank_size")
    return product


def _write_welders(db: Session, record_id: str, welder_ids: list[str]) -> None:
    for wid in welder_ids:
        db.add(WelderLog(production_record_id=record_id, operator_id=wid))


def _result(asm: Assembly, ts) -> dict:
    return {
        "id": asm.id,
        "serial_number_id": asm.serial_number_id,
        "alpha_code": asm.alpha_code,
        "timestamp": ts.isoformat(),
    }


def create_assembly(
    db: Session,
    *,
    shells: list[str],
    left_head_lot_id: str,
    right_head_lot_id: str,
    tank_size: int,
    work_center_id: str,
    production_line_id: str,
    operator_id: str,
    asset_id: str | None = None,
    welder_ids: list[str] | None = None,
) -> dict:
    """Bind drawn shells and heads into a new assembly under a fresh alpha code."""
    with atomic(db):
        wc = _require(db, WorkCenter, work_center_id, "work_center_id", "work center")
        line = _require(db, ProductionLine, production_line_id, "production_line_id", "production line")
        plant_id = line.plant_id
        _require(db, Operator, operator_id, "operator_id", "operator")
        if not _blank(asset_id):
            _require(db, Asset, asset_id, "asset_id", "asset")
        welders = _check_welders(db, welder_ids)
        if tank_size is None or int(tank_size) <= 0:
            raise ValidationError("tank_size must be > 0", field="tank_size")
        tank_size = int(tank_size)

        shell_serials = _check_shell_list(shells, required=True)

        # the counter row is the plant lock; shells are checked under it
        alpha = allocate_alpha_code(db, plant_id)
        shell_nodes = [_resolve_shell(db, s, plant_id=plant_id, tank_size=tank_size) for s in shell_serials]
        left = resolve_head_lot(db, left_head_lot_id, plant_id=plant_id, field="left_head_lot_id")
        right = resolve_head_lot(db, right_head_lot_id, plant_id=plant_id, field="right_head_lot_id")
        product = _assembled_product(db, tank_size)

        now = utcnow()
        node = SerialNumber(
            serial=alpha,
            plant_id=plant_id,
            product_id=product.id,
            created_by=operator_id,
            created_at=now,
        )
        db.add(node)
        db.flush()
        asm = Assembly(
            serial_number_id=node.id,
            plant_id=plant_id,
            alpha_code=alpha,
            tank_size=tank_size,
            work_center_id=wc.id,
            asset_id=asset_id or None,
            production_line_id=line.id,
            operator_id=operator_id,
            timestamp=now,
            is_active=True,
        )
        record = ProductionRecord(
            serial_number_id=node.id,
            work_center_id=wc.id,
            asset_id=asset_id or None,
            production_line_id=line.id,
            operator_id=operator_id,
            record_type="Assembly",
            timestamp=now,
        )
        db.add_all([asm, record])
        db.flush()

        for i, shell in enumerate(shell_nodes):
            append_edge(db, kind=REL_COMPONENT, from_sn_id=shell.id, to_sn_id=node.id,
                        tank_location=shell_slot(i), quantity=1, production_record_id=record.id, timestamp=now)
        for slot, head in ((SLOT_HEAD_LEFT, left), (SLOT_HEAD_RIGHT, right)):
            append_edge(db, kind=REL_COMPONENT, from_sn_id=head.id, to_sn_id=node.id,
                        tank_location=slot, quantity=1, production_record_id=record.id, timestamp=now)
        _write_welders(db, record.id, welders)

        audit(db, actor=operator_id, action="assembly.create", entity_type="assembly", entity_id=asm.id,
              payload={"alpha_code": alpha, "shells": shell_serials, "tank_size": tank_size})
        publish(db, "genealogy.assembly.created",
                {"assembly_id": asm.id, "alpha_code": alpha, "plant_id": plant_id, "serial_number_id": node.id})
    logger.info("assembly %s created in plant %s with %d shells", alpha, plant_id, len(shell_nodes))
    return _result(asm, now)


def find_active_assembly(db: Session, alpha_code: str, *, plant_id: str | None = None) -> Assembly:
    q = db.query(Assembly).filter(Assembly.alpha_code == alpha_code, Assembly.is_active == True)  # noqa: E712
    if plant_id:
        q = q.filter(Assembly.plant_id == plant_id)
    asm = q.order_by(Assembly.timestamp.desc()).first()
    if asm is None:
        raise NotFoundError(f"no active assembly {alpha_code}", field="alpha_code")
    return asm


def _lock_active_assembly(db: Session, alpha_code: str, *, plant_id: str | None) -> Assembly:
    asm = find_active_assembly(db, alpha_code, plant_id=plant_id)
    lock_plant(db, asm.plant_id)
    # another writer may have married it while we waited for the lock
    db.refresh(asm)
    if not asm.is_active:
        raise NotFoundError(f"no active assembly {alpha_code}", field="alpha_code")
    return asm


def reassemble(
    db: Session,
    alpha_code: str,
    *,
    shells: list[str] | None = None,
    left_head_lot_id: str | None = None,
    right_head_lot_id: str | None = None,
    operator_id: str | None = None,
    welder_ids: list[str] | None = None,
    plant_id: str | None = None,
) -> dict:
    """Swap components of an active assembly.

    Each supplied slot that changes gets a new component-of edge and a replaces
    edge old -> new. Slots left out, or re-supplied with the node they already
    hold, are untouched. The alpha code and assembly identity never change.
    """
    with atomic(db):
        asm = _lock_active_assembly(db, alpha_code, plant_id=plant_id)
        if not _blank(operator_id):
            _require(db, Operator, operator_id, "operator_id", "operator")
        welders = _check_welders(db, welder_ids)

        current = current_components(db, asm.serial_number_id)
        wanted: list[tuple[str, SerialNumber]] = []
        for i, serial in enumerate(_check_shell_list(shells, required=False)):
            wanted.append((shell_slot(i), _resolve_shell(db, serial, plant_id=asm.plant_id, tank_size=asm.tank_size,
                                                         assembly_sn_id=asm.serial_number_id)))
        for slot, lot_id, field in ((SLOT_HEAD_LEFT, left_head_lot_id, "left_head_lot_id"),
                                    (SLOT_HEAD_RIGHT, right_head_lot_id, "right_head_lot_id")):
            if not _blank(lot_id):
                wanted.append((slot, resolve_head_lot(db, lot_id, plant_id=asm.plant_id, field=field)))

        kept_ids = {node.id for _, node in wanted}
        changes = []
        for slot, node in wanted:
            edge = current.get(slot)
            if edge is not None and edge.from_sn_id == node.id:
                continue
            changes.append((slot, edge.from_sn_id if edge is not None else None, node))

        if not changes and _blank(operator_id) and not welders:
            return _result(asm, asm.timestamp)

        now = utcnow()
        actor = operator_id or asm.operator_id
        record = ProductionRecord(
            serial_number_id=asm.serial_number_id,
            work_center_id=asm.work_center_id,
            asset_id=asm.asset_id,
            production_line_id=asm.production_line_id,
            operator_id=actor,
            record_type="Reassembly",
            timestamp=now,
        )
        db.add(record)
        db.flush()

        for slot, old_id, new in changes:
            append_edge(db, kind=REL_COMPONENT, from_sn_id=new.id, to_sn_id=asm.serial_number_id,
                        tank_location=slot, quantity=1, production_record_id=record.id, timestamp=now)
            if old_id is None:
                continue
            append_edge(db, kind=REL_REPLACES, from_sn_id=old_id, to_sn_id=new.id,
                        tank_location=slot, quantity=1, production_record_id=record.id, timestamp=now)
            if old_id in kept_ids or not slot.startswith("Shell"):
                # head lots are shared between assemblies; a shell moved to another slot stays current
                continue
            old = db.get(SerialNumber, old_id)
            if old is not None and old.replace_by_sn_id is None:
                mark_replaced(db, old, new, actor=actor)
        _write_welders(db, record.id, welders)
        if not _blank(operator_id):
            asm.operator_id = operator_id

        node = asm.serial_number
        node.modified_by = actor
        node.modified_at = now

        changed_slots = [c[0] for c in changes]
        audit(db, actor=actor, action="assembly.reassemble", entity_type="assembly", entity_id=asm.id,
              payload={"alpha_code": asm.alpha_code, "slots": changed_slots})
        publish(db, "genealogy.assembly.reassembled",
                {"assembly_id": asm.id, "alpha_code": asm.alpha_code, "slots": changed_slots})
    logger.info("assembly %s reassembled, slots changed: %s", asm.alpha_code, ", ".join(changed_slots) or "none")
    return _result(asm, now)


def marry(
    db: Session,
    alpha_code: str,
    *,
    sellable_serial: str,
    work_center_id: str,
    operator_id: str,
    asset_id: str | None = None,
    inspection_result: str | None = None,
    plant_id: str | None = None,
) -> dict:
    """Hydro marriage: the assembly becomes the body of a sellable (nameplate) serial."""
    with atomic(db):
        asm = _lock_active_assembly(db, alpha_code, plant_id=plant_id)
        wc = _require(db, WorkCenter, work_center_id, "work_center_id", "work center")
        _require(db, Operator, operator_id, "operator_id", "operator")
        if not _blank(asset_id):
            _require(db, Asset, asset_id, "asset_id", "asset")
        if _blank(sellable_serial):
            raise ValidationError("sellable_serial required", field="sellable_serial")

        product = (
            db.query(Product)
            .filter(Product.system_type == "sellable", Product.tank_size == asm.tank_size, Product.is_active == True)  # noqa: E712
            .order_by(Product.product_number.asc())
            .first()
        )
        sellable = find_or_create_node(
            db,
            serial=sellable_serial.strip(),
            plant_id=asm.plant_id,
            product_id=product.id if product else None,
            created_by=operator_id,
        )
        if sellable.product is not None and sellable.product.system_type != "sellable":
            raise ValidationError(f"{sellable.serial} is not a sellable serial", field="sellable_serial")
        if current_components(db, sellable.id).get(SLOT_ASSEMBLY) is not None:
            raise ValidationError(f"{sellable.serial} already carries an assembly", field="sellable_serial")

        now = utcnow()
        record = ProductionRecord(
            serial_number_id=sellable.id,
            work_center_id=wc.id,
            asset_id=asset_id or None,
            production_line_id=asm.production_line_id,
            operator_id=operator_id,
            record_type="Hydro",
            inspection_result=inspection_result,
            timestamp=now,
        )
        db.add(record)
        db.flush()
        append_edge(db, kind=REL_COMPONENT, from_sn_id=asm.serial_number_id, to_sn_id=sellable.id,
                    tank_location=SLOT_ASSEMBLY, quantity=1, production_record_id=record.id, timestamp=now)
        asm.is_active = False

        audit(db, actor=operator_id, action="assembly.marry", entity_type="assembly", entity_id=asm.id,
              payload={"alpha_code": asm.alpha_code, "sellable_serial": sellable.serial})
        publish(db, "genealogy.assembly.married",
                {"assembly_id": asm.id, "alpha_code": asm.alpha_code, "sellable_serial_number_id": sellable.id})
    logger.info("assembly %s married to %s", asm.alpha_code, sellable.serial)
    return {
        "id": record.id,
        "alpha_code": asm.alpha_code,
        "sellable_serial": sellable.serial,
        "inspection_result": inspection_result,
        "timestamp": now.isoformat(),
    }


def next_alpha_code(db: Session, plant_id: str) -> str:
    return peek_alpha_code(db, plant_id)

