from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.db.models.common import utcnow
from app.db.models.genealogy import SerialNumber
from app.db.models.reference import Plant

logger = logging.getLogger(__name__)

ALPHA_MIN_WIDTH = 2


def alpha_code_for_index(index: int) -> str:
    """Map a counter value to its alpha code.

    0 -> "AA", 675 -> "ZZ", 676 -> "AAA": every width is exhausted before the
    next one starts, so codes sort by (length, text) in allocation order.
    """
    if index < 0:
        raise ValueError("alpha index must be >= 0")
    width = ALPHA_MIN_WIDTH
    while index >= 26 ** width:
        index -= 26 ** width
        width += 1
    letters = []
    for _ in range(width):
        index, rem = divmod(index, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def allocate_alpha_code(db: Session, plant_id: str) -> str:
    """Take the next alpha code for a plant inside the caller's transaction.

    The UPDATE holds the plant row until the caller commits or rolls back, so a
    rolled-back assembly never burns a code another writer could observe.
    """
    res = db.execute(
        update(Plant)
        .where(Plant.id == plant_id)
        .values(next_alpha_index=Plant.next_alpha_index + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        raise NotFoundError(f"plant {plant_id} not found", field="plant_id")
    taken = db.execute(select(Plant.next_alpha_index).where(Plant.id == plant_id)).scalar_one() - 1
    code = alpha_code_for_index(taken)
    logger.info("allocated alpha code %s for plant %s", code, plant_id)
    return code


def lock_plant(db: Session, plant_id: str) -> None:
    """Hold the plant row until the caller commits, without taking a code.

    Every assembly mutation of a plant goes through this row (or through
    ``allocate_alpha_code``), so "is this shell free" checks and the edges that
    consume the shell never interleave between writers.
    """
    res = db.execute(
        update(Plant)
        .where(Plant.id == plant_id)
        .values(next_alpha_index=Plant.next_alpha_index)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        raise NotFoundError(f"plant {plant_id} not found", field="plant_id")


def peek_alpha_code(db: Session, plant_id: str) -> str:
    index = db.execute(select(Plant.next_alpha_index).where(Plant.id == plant_id)).scalar_one_or_none()
    if index is None:
        raise NotFoundError(f"plant {plant_id} not found", field="plant_id")
    return alpha_code_for_index(index)


def resolve_node(
    db: Session,
    serial: str,
    *,
    plant_id: str | None = None,
    include_retired: bool = False,
) -> SerialNumber:
    """Resolve a serial (or lot serial) to its node.

    Serials repeat across plants and over time; the newest non-replaced node
    wins. With ``include_retired`` the newest node is returned even when it has
    been replaced, which is what history reads want.
    """
    q = db.query(SerialNumber).filter(SerialNumber.serial == serial)
    if plant_id:
        q = q.filter(SerialNumber.plant_id == plant_id)
    rows = q.order_by(SerialNumber.created_at.desc()).all()
    if not rows:
        raise NotFoundError(f"serial {serial} not found", field="serial")
    for row in rows:
        if not row.is_retired:
            return row
    if include_retired:
        return rows[0]
    raise NotFoundError(f"serial {serial} has been replaced", field="serial")


def current_node(db: Session, node: SerialNumber) -> SerialNumber:
    """Follow replaced-by links to the final node of the chain."""
    seen = {node.id}
    while node.replace_by_sn_id:
        nxt = db.get(SerialNumber, node.replace_by_sn_id)
        if nxt is None or nxt.id in seen:
            logger.warning("replacement chain from %s stops at %s", node.serial, node.replace_by_sn_id)
            break
        seen.add(nxt.id)
        node = nxt
    return node


def find_or_create_node(
    db: Session,
    *,
    serial: str,
    plant_id: str,
    product_id: str | None = None,
    mill_vendor_id: str | None = None,
    processor_vendor_id: str | None = None,
    heads_vendor_id: str | None = None,
    heat_number: str | None = None,
    coil_number: str | None = None,
    lot_number: str | None = None,
    created_by: str | None = None,
) -> SerialNumber:
    """Reuse the plant's current node for this serial, or register a new one.

    Existing nodes are never rewritten; a node with the same serial but a
    different product starts a new identity.
    """
    existing = (
        db.query(SerialNumber)
        .filter(
            SerialNumber.serial == serial,
            SerialNumber.plant_id == plant_id,
            SerialNumber.replace_by_sn_id.is_(None),
            SerialNumber.is_obsolete == False,  # noqa: E712
        )
        .order_by(SerialNumber.created_at.desc())
        .first()
    )
    if existing and (product_id is None or existing.product_id == product_id):
        return existing

    node = SerialNumber(
        serial=serial,
        plant_id=plant_id,
        product_id=product_id,
        mill_vendor_id=mill_vendor_id,
        processor_vendor_id=processor_vendor_id,
        heads_vendor_id=heads_vendor_id,
        heat_number=heat_number,
        coil_number=coil_number,
        lot_number=lot_number,
        created_by=created_by,
        created_at=utcnow(),
    )
    db.add(node)
    db.flush()
    return node


def mark_replaced(db: Session, old: SerialNumber, new: SerialNumber, *, actor: str | None) -> None:
    old.replace_by_sn_id = new.id
    old.modified_by = actor
    old.modified_at = utcnow()
