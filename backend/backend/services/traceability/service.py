from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.models.genealogy import GenealogyEdge, SerialNumber
from app.db.models.production import Annotation, DefectLog, ProductionRecord
from app.db.models.reference import Vendor
from services.genealogy.identity import resolve_node
from services.genealogy.ledger import (
    COMPOSITION_KINDS,
    SLOT_HEAD_LEFT,
    SLOT_HEAD_RIGHT,
    current_assembly_of,
    current_bindings,
    current_components,
    edges_into,
    edges_out_of,
    replaces_into,
    slot_sort_key,
)

logger = logging.getLogger(__name__)


def _head_info(node: SerialNumber | None) -> dict | None:
    if node is None:
        return None
    return {
        "serial": node.serial,
        "heat_number": node.heat_number or "",
        "coil_number": node.coil_number or "",
        "lot_number": node.lot_number,
        "product_description": node.product.product_number if node.product else "",
    }


def get_context(db: Session, serial: str, *, plant_id: str | None = None) -> dict:
    """What the assembly screen needs to know about a scanned serial."""
    node = resolve_node(db, serial, plant_id=plant_id, include_retired=True)
    product = node.product
    ctx = {
        "serial_number": node.serial,
        "tank_size": product.tank_size if product else 0,
        "shell_size": product.tank_type if product else None,
        "existing_assembly": None,
    }
    held = current_assembly_of(db, node.id)
    if held is None:
        return ctx

    asm, _ = held
    components = current_components(db, asm.serial_number_id)
    shells = []
    for slot in sorted(components, key=slot_sort_key):
        if slot.startswith("Shell"):
            shell = db.get(SerialNumber, components[slot].from_sn_id)
            if shell is not None:
                shells.append(shell.serial)

    def head(slot: str) -> dict | None:
        edge = components.get(slot)
        return _head_info(db.get(SerialNumber, edge.from_sn_id)) if edge and edge.from_sn_id else None

    ctx["existing_assembly"] = {
        "alpha_code": asm.alpha_code,
        "tank_size": asm.tank_size,
        "shells": shells,
        "left_head_info": head(SLOT_HEAD_LEFT),
        "right_head_info": head(SLOT_HEAD_RIGHT),
    }
    return ctx


def _label(node: SerialNumber) -> str:
    product = node.product
    kind = (product.tank_type or product.system_type) if product else "Unknown"
    return f"{node.serial} ({kind})"


def _view(db: Session, node: SerialNumber, edge: GenealogyEdge | None) -> dict:
    product = node.product
    replaced_by = db.get(SerialNumber, node.replace_by_sn_id) if node.replace_by_sn_id else None
    return {
        "id": node.id,
        "serial": node.serial,
        "label": _label(node),
        "node_type": product.system_type if product else "serial",
        "relationship": edge.kind if edge else None,
        "tank_location": edge.tank_location if edge else None,
        "product_id": node.product_id,
        "product_number": product.product_number if product else None,
        "tank_size": product.tank_size if product else None,
        "tank_type": product.tank_type if product else None,
        "mill_vendor_id": node.mill_vendor_id,
        "processor_vendor_id": node.processor_vendor_id,
        "heads_vendor_id": node.heads_vendor_id,
        "heat_number": node.heat_number,
        "coil_number": node.coil_number,
        "lot_number": node.lot_number,
        "is_obsolete": node.is_obsolete,
        "replaced_by": replaced_by.serial if replaced_by else None,
        "defect_count": 0,
        "annotation_count": 0,
        "truncated": False,
        "children": [],
        "replaced": [],
    }


def _roots(db: Session, start: SerialNumber) -> list[SerialNumber]:
    """Every top ancestor reachable through composition edges, current or historical."""
    roots: list[SerialNumber] = []
    seen = {start.id}
    queue = [start]
    while queue:
        node = queue.pop(0)
        parents = [e.to_sn_id for e in edges_out_of(db, node.id, COMPOSITION_KINDS) if e.to_sn_id]
        if not parents:
            roots.append(node)
            continue
        for pid in parents:
            if pid in seen:
                continue
            seen.add(pid)
            parent = db.get(SerialNumber, pid)
            if parent is not None:
                queue.append(parent)
    return roots or [start]


def _replaced_history(db: Session, parent_id: str, child: SerialNumber, slot: str | None) -> list[dict]:
    """Nodes that held ``slot`` of ``parent_id`` before ``child``, newest first."""
    out: list[dict] = []
    seen = {child.id}
    cur = child
    while True:
        prev_edge = None
        for e in reversed(replaces_into(db, cur.id)):
            if e.from_sn_id is None or e.from_sn_id in seen:
                continue
            if slot and e.tank_location and e.tank_location != slot:
                continue
            rec = db.get(ProductionRecord, e.production_record_id) if e.production_record_id else None
            if rec is not None and rec.serial_number_id != parent_id:
                continue
            prev_edge = e
            break
        if prev_edge is None:
            return out
        old = db.get(SerialNumber, prev_edge.from_sn_id)
        if old is None:
            return out
        seen.add(old.id)
        out.append({
            "id": old.id,
            "serial": old.serial,
            "label": _label(old),
            "tank_location": prev_edge.tank_location,
            "replaced_at": prev_edge.timestamp.isoformat(),
            "production_record_id": prev_edge.production_record_id,
        })
        cur = old


def _has_components(db: Session, sn_id: str) -> bool:
    return any(e.from_sn_id for e in current_bindings(edges_into(db, sn_id, COMPOSITION_KINDS)))


def _build_tree(db: Session, root: SerialNumber, visited: set[str], views: list[dict]) -> dict:
    root_view = _view(db, root, None)
    views.append(root_view)
    visited.add(root.id)
    stack = [(root_view, root)]
    while stack:
        view, node = stack.pop()
        for edge in current_bindings(edges_into(db, node.id, COMPOSITION_KINDS)):
            if edge.from_sn_id is None:
                continue
            child = db.get(SerialNumber, edge.from_sn_id)
            if child is None:
                continue
            child_view = _view(db, child, edge)
            child_view["replaced"] = _replaced_history(db, node.id, child, edge.tank_location)
            view["children"].append(child_view)
            views.append(child_view)
            if child.id in visited:
                # leaves have nothing left to show
                child_view["truncated"] = _has_components(db, child.id)
                continue
            visited.add(child.id)
            stack.append((child_view, child))
    return root_view


def _fill_counts(db: Session, views: list[dict]) -> None:
    ids = list({v["id"] for v in views})
    if not ids:
        return
    defects = dict(
        db.query(DefectLog.serial_number_id, func.count(DefectLog.id))
        .filter(DefectLog.serial_number_id.in_(ids))
        .group_by(DefectLog.serial_number_id)
        .all()
    )
    annotations = dict(
        db.query(ProductionRecord.serial_number_id, func.count(Annotation.id))
        .join(Annotation, Annotation.production_record_id == ProductionRecord.id)
        .filter(ProductionRecord.serial_number_id.in_(ids))
        .group_by(ProductionRecord.serial_number_id)
        .all()
    )
    vendor_ids = {v[k] for v in views for k in ("mill_vendor_id", "processor_vendor_id", "heads_vendor_id") if v[k]}
    vendors = dict(db.query(Vendor.id, Vendor.name).filter(Vendor.id.in_(vendor_ids)).all()) if vendor_ids else {}
    for v in views:
        v["defect_count"] = int(defects.get(v["id"], 0))
        v["annotation_count"] = int(annotations.get(v["id"], 0))
        v["mill_vendor"] = vendors.get(v["mill_vendor_id"])
        v["processor_vendor"] = vendors.get(v["processor_vendor_id"])
        v["heads_vendor"] = vendors.get(v["heads_vendor_id"])


def _events(db: Session, sn_ids: set[str]) -> list[dict]:
    if not sn_ids:
        return []
    records = (
        db.query(ProductionRecord)
        .filter(ProductionRecord.serial_number_id.in_(sn_ids))
        .order_by(ProductionRecord.timestamp.asc(), ProductionRecord.id.asc())
        .all()
    )
    serials = dict(db.query(SerialNumber.id, SerialNumber.serial).filter(SerialNumber.id.in_(sn_ids)).all())
    return [
        {
            "id": r.id,
            "timestamp": r.timestamp.isoformat(),
            "serial": serials.get(r.serial_number_id),
            "work_center_name": r.work_center.name if r.work_center else "",
            "type": r.work_center.type_name if r.work_center else "Manufacturing",
            "record_type": r.record_type,
            "completed_by": r.operator.display_name if r.operator else "",
            "asset_name": r.asset.name if r.asset else None,
            "inspection_result": r.inspection_result,
        }
        for r in records
    ]


def get_lookup(db: Session, serial: str, *, plant_id: str | None = None) -> dict:
    """Full genealogy of a serial: every tree it belongs to plus its manufacturing events.

    Read-only. A node reached twice is shown again but not expanded; it carries
    ``truncated`` when it has components of its own that are left out.
    """
    node = resolve_node(db, serial, plant_id=plant_id, include_retired=True)
    visited: set[str] = set()
    views: list[dict] = []
    trees = [_build_tree(db, root, visited, views) for root in _roots(db, node)]
    _fill_counts(db, views)

    sn_ids = {v["id"] for v in views}
    sn_ids.update(h["id"] for v in views for h in v["replaced"])
    logger.debug("lookup %s: %d trees, %d nodes", serial, len(trees), len(views))
    return {
        "serial_number": node.serial,
        "tree_nodes": trees,
        "events": _events(db, sn_ids),
    }
