import pytest

from app.core.errors import NotFoundError
from app.db.models.genealogy import REL_COMPONENT, SerialNumber
from app.db.models.production import Annotation, DefectLog, ProductionRecord
from services.assembly import service as assembly
from services.genealogy.identity import find_or_create_node
from services.genealogy.ledger import append_edge
from services.material_queue import service as queue
from services.traceability import service as trace


def _child(node, slot):
    return next(c for c in node["children"] if c["tank_location"] == slot)


def test_lookup_of_zero_edge_serial(db, ref, make_shell):
    make_shell("LONE")
    result = trace.get_lookup(db, "LONE")
    assert result["serial_number"] == "LONE"
    assert len(result["tree_nodes"]) == 1
    root = result["tree_nodes"][0]
    assert root["serial"] == "LONE"
    assert root["node_type"] == "shell"
    assert root["children"] == []
    assert root["relationship"] is None
    assert result["events"] == []


def test_lookup_unknown_serial(db, ref):
    with pytest.raises(NotFoundError):
        trace.get_lookup(db, "NOPE")
    with pytest.raises(NotFoundError):
        trace.get_context(db, "NOPE")


def test_lookup_from_shell_reaches_assembly(db, ref, build_assembly):
    build_assembly()
    result = trace.get_lookup(db, "S2")
    [root] = result["tree_nodes"]
    assert root["serial"] == "AA"
    assert root["node_type"] == "assembled"
    assert [c["tank_location"] for c in root["children"]] == ["Head 1", "Head 2", "Shell 1", "Shell 2"]
    head = _child(root, "Head 1")
    assert head["serial"] == "Lot L100"
    assert head["lot_number"] == "L100"
    assert head["heads_vendor"] == "Lot Heads"
    assert head["relationship"] == "component-of"
    assert [e["record_type"] for e in result["events"]] == ["Assembly"]
    assert result["events"][0]["completed_by"] == "Pat Operator"
    assert result["events"][0]["asset_name"] == "Welder A"


def test_replaced_shell_stays_in_history(db, ref, build_assembly, make_shell):
    build_assembly()
    make_shell("S3")
    assembly.reassemble(db, "AA", shells=["S3"], operator_id=ref.operator_id)

    result = trace.get_lookup(db, "S1")
    [root] = result["tree_nodes"]
    assert root["serial"] == "AA"
    slot = _child(root, "Shell 1")
    assert slot["serial"] == "S3"
    assert [h["serial"] for h in slot["replaced"]] == ["S1"]
    assert all(c["serial"] != "S1" for c in root["children"])
    assert [e["record_type"] for e in result["events"]] == ["Assembly", "Reassembly"]

    s1 = trace.get_lookup(db, "S3")["tree_nodes"][0]
    assert _child(s1, "Shell 1")["replaced"][0]["serial"] == "S1"


def test_replacement_history_is_flat(db, ref, build_assembly, make_shell):
    build_assembly()
    make_shell("S3")
    make_shell("S4")
    assembly.reassemble(db, "AA", shells=["S3"])
    assembly.reassemble(db, "AA", shells=["S4"])
    root = trace.get_lookup(db, "AA")["tree_nodes"][0]
    slot = _child(root, "Shell 1")
    assert slot["serial"] == "S4"
    assert [h["serial"] for h in slot["replaced"]] == ["S3", "S1"]
    assert slot["replaced"][0].get("children") is None


def test_shared_head_lot_roots_every_assembly(db, ref, build_assembly, make_shell, draw_head):
    build_assembly()
    make_shell("S3")
    draw_head("L300", card="01")
    assembly.create_assembly(
        db,
        shells=["S3"],
        left_head_lot_id="L100",
        right_head_lot_id="L300",
        tank_size=120,
        work_center_id=ref.assembly_wc,
        production_line_id=ref.line_id,
        operator_id=ref.operator_id,
    )
    result = trace.get_lookup(db, "Lot L100")
    assert sorted(t["serial"] for t in result["tree_nodes"]) == ["AA", "AB"]
    heads = [_child(t, "Head 1") for t in result["tree_nodes"]]
    assert [h["serial"] for h in heads] == ["Lot L100", "Lot L100"]
    # a shared leaf repeats in full
    assert [h["truncated"] for h in heads] == [False, False]


def test_plate_appears_under_rolled_shells(db, ref):
    queue.enqueue(db, ref.rolls_wc, {
        "product_id": ref.plate_id, "heat_number": "H1", "coil_number": "C1", "quantity": 2,
        "vendor_mill_id": ref.mill_id,
    })
    queue.advance(db, ref.rolls_wc)
    queue.record_completion(db, ref.rolls_wc, serial="R1")
    queue.record_completion(db, ref.rolls_wc, serial="R2")

    shell = trace.get_lookup(db, "R1")["tree_nodes"][0]
    assert shell["serial"] == "R1"
    [plate] = shell["children"]
    assert plate["serial"] == "Heat H1 Coil C1"
    assert plate["relationship"] == "produced-from"
    assert plate["mill_vendor"] == "North Mill"

    from_plate = trace.get_lookup(db, "Heat H1 Coil C1")
    assert sorted(t["serial"] for t in from_plate["tree_nodes"]) == ["R1", "R2"]


def test_shared_node_with_components_is_truncated(db, ref):
    queue.enqueue(db, ref.rolls_wc, {
        "product_id": ref.plate_id, "heat_number": "H1", "coil_number": "C1", "quantity": 1,
        "vendor_mill_id": ref.mill_id,
    })
    queue.advance(db, ref.rolls_wc)
    queue.record_completion(db, ref.rolls_wc, serial="R1")
    r1 = db.query(SerialNumber).filter(SerialNumber.serial == "R1").one()
    for serial in ("X1", "X2"):
        parent = find_or_create_node(db, serial=serial, plant_id=ref.plant_id)
        db.flush()
        append_edge(db, kind=REL_COMPONENT, from_sn_id=r1.id, to_sn_id=parent.id, tank_location="Shell 1")
    db.commit()

    trees = {t["serial"]: t for t in trace.get_lookup(db, "Heat H1 Coil C1")["tree_nodes"]}
    assert sorted(trees) == ["X1", "X2"]
    first, second = (_child(trees[s], "Shell 1") for s in ("X1", "X2"))
    assert first["truncated"] is False
    assert [c["serial"] for c in first["children"]] == ["Heat H1 Coil C1"]
    assert second["truncated"] is True
    assert second["children"] == []


def test_counts_defects_and_annotations(db, ref, build_assembly):
    created = build_assembly()
    s1 = db.query(SerialNumber).filter(SerialNumber.serial == "S1").one()
    record = db.query(ProductionRecord).filter(ProductionRecord.serial_number_id == created["serial_number_id"]).one()
    db.add_all([
        DefectLog(serial_number_id=s1.id, defect_code="POROSITY"),
        DefectLog(serial_number_id=s1.id, defect_code="UNDERCUT", is_repaired=True),
        Annotation(production_record_id=record.id, annotation_type="Note", notes="checked twice"),
    ])
    db.commit()

    root = trace.get_lookup(db, "AA")["tree_nodes"][0]
    assert root["annotation_count"] == 1
    assert root["defect_count"] == 0
    assert _child(root, "Shell 1")["defect_count"] == 2


def test_lookup_is_repeatable(db, ref, build_assembly, make_shell):
    build_assembly()
    make_shell("S3")
    assembly.reassemble(db, "AA", shells=["S3"])
    assert trace.get_lookup(db, "S2") == trace.get_lookup(db, "S2")
    assert trace.get_context(db, "S2") == trace.get_context(db, "S2")


def test_context_for_shell_in_assembly(db, ref, build_assembly, make_shell):
    build_assembly()
    ctx = trace.get_context(db, "S1")
    assert ctx["serial_number"] == "S1"
    assert ctx["tank_size"] == 120
    assert ctx["shell_size"] == "120 gal"
    existing = ctx["existing_assembly"]
    assert existing["alpha_code"] == "AA"
    assert existing["shells"] == ["S1", "S2"]
    assert existing["left_head_info"]["lot_number"] == "L100"
    assert existing["right_head_info"]["product_description"] == "HD-120"

    make_shell("FREE")
    assert trace.get_context(db, "FREE")["existing_assembly"] is None
