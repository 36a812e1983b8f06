from __future__ import annotations

import re
from datetime import datetime

from sqlalchemy.orm import Session

from app.db.models.common import utcnow
from app.db.models.genealogy import (
    Assembly,
    GenealogyEdge,
    REL_COMPONENT,
    REL_PRODUCED_FROM,
    REL_REPLACES,
)

# Edges that say "from-node went into to-node".
COMPOSITION_KINDS = (REL_COMPONENT, REL_PRODUCED_FROM)

SLOT_HEAD_LEFT = "Head 1"
SLOT_HEAD_RIGHT = "Head 2"
SLOT_ASSEMBLY = "Assembly"

_slot_re = re.compile(r"^(.*?)(\d+)$")


def shell_slot(index: int) -> str:
    """Slot name for the zero-based shell index."""
    return f"Shell {index + 1}"


def slot_sort_key(slot: str | None) -> tuple:
    if not slot:
        return ("~", 0)
    m = _slot_re.match(slot)
    if m:
        return (m.group(1).strip(), int(m.group(2)))
    return (slot, 0)


def append_edge(
    db: Session,
    *,
    kind: str,
    from_sn_id: str | None,
    to_sn_id: str | None,
    tank_location: str | None = None,
    quantity: int | None = None,
    production_record_id: str | None = None,
    timestamp: datetime | None = None,
) -> GenealogyEdge:
    """The only write path into the ledger. Rows are never updated or deleted."""
    edge = GenealogyEdge(
        kind=kind,
        from_sn_id=from_sn_id,
        to_sn_id=to_sn_id,
        tank_location=tank_location,
        quantity=quantity,
        production_record_id=production_record_id,
        timestamp=timestamp or utcnow(),
    )
    db.add(edge)
    return edge


def edges_into(db: Session, sn_id: str, kinds: tuple[str, ...] = COMPOSITION_KINDS) -> list[GenealogyEdge]:
    return (
        db.query(GenealogyEdge)
        .filter(GenealogyEdge.to_sn_id == sn_id, GenealogyEdge.kind.in_(kinds))
        .order_by(GenealogyEdge.id.asc())
        .all()
    )


def edges_out_of(db: Session, sn_id: str, kinds: tuple[str, ...] = COMPOSITION_KINDS) -> list[GenealogyEdge]:
    return (
        db.query(GenealogyEdge)
        .filter(GenealogyEdge.from_sn_id == sn_id, GenealogyEdge.kind.in_(kinds))
        .order_by(GenealogyEdge.id.asc())
        .all()
    )


def current_bindings(edges: list[GenealogyEdge]) -> list[GenealogyEdge]:
    """Reduce incoming composition edges to the ones still in force.

    A slot (tank_location) is bound by its most recent edge; edges without a
    slot (batch consumption) all stay current. Result is ordered by slot, then
    ledger sequence.
    """
    by_slot: dict[str, GenealogyEdge] = {}
    loose: list[GenealogyEdge] = []
    for e in edges:
        if e.from_sn_id is None and not e.tank_location:
            continue
        if e.tank_location:
            prev = by_slot.get(e.tank_location)
            if prev is None or e.id > prev.id:
                by_slot[e.tank_location] = e
        else:
            loose.append(e)
    current = list(by_slot.values()) + loose
    current.sort(key=lambda e: (slot_sort_key(e.tank_location), e.id))
    return current


def current_components(db: Session, assembly_sn_id: str) -> dict[str, GenealogyEdge]:
    """Slot -> edge currently binding a component to the assembly node."""
    edges = edges_into(db, assembly_sn_id, (REL_COMPONENT,))
    return {e.tank_location: e for e in current_bindings(edges) if e.tank_location}


def current_assembly_of(
    db: Session, sn_id: str, *, active_only: bool = True
) -> tuple[Assembly, GenealogyEdge] | None:
    """Assembly that currently holds this node in one of its slots.

    With ``active_only=False`` assemblies already married into a sellable serial
    count too; their shells are consumed for good.
    """
    for edge in reversed(edges_out_of(db, sn_id, (REL_COMPONENT,))):
        q = db.query(Assembly).filter(Assembly.serial_number_id == edge.to_sn_id)
        if active_only:
            q = q.filter(Assembly.is_active == True)  # noqa: E712
        asm = q.first()
        if asm is None:
            continue
        bound = current_components(db, asm.serial_number_id).get(edge.tank_location)
        if bound is not None and bound.from_sn_id == sn_id:
            return asm, bound
    return None


def replaces_into(db: Session, sn_id: str) -> list[GenealogyEdge]:
    return edges_into(db, sn_id, (REL_REPLACES,))
