import pytest

from app.core.errors import NotFoundError
from app.db.models.genealogy import SerialNumber
from app.db.models.reference import Plant
from services.genealogy.identity import (
    alpha_code_for_index,
    allocate_alpha_code,
    current_node,
    find_or_create_node,
    mark_replaced,
    peek_alpha_code,
    resolve_node,
)


@pytest.mark.parametrize("index,code", [
    (0, "AA"),
    (1, "AB"),
    (25, "AZ"),
    (26, "BA"),
    (675, "ZZ"),
    (676, "AAA"),
    (677, "AAB"),
    (676 + 26 ** 3 - 1, "ZZZ"),
    (676 + 26 ** 3, "AAAA"),
])
def test_alpha_code_for_index(index, code):
    assert alpha_code_for_index(index) == code


def test_alpha_code_rejects_negative_index():
    with pytest.raises(ValueError):
        alpha_code_for_index(-1)


def test_alpha_codes_sort_in_allocation_order():
    codes = [alpha_code_for_index(i) for i in range(0, 2000, 7)]
    assert codes == sorted(codes, key=lambda c: (len(c), c))


def test_allocate_is_monotonic_and_peek_does_not_allocate(db, ref):
    assert peek_alpha_code(db, ref.plant_id) == "AA"
    assert peek_alpha_code(db, ref.plant_id) == "AA"
    assert allocate_alpha_code(db, ref.plant_id) == "AA"
    assert allocate_alpha_code(db, ref.plant_id) == "AB"
    db.commit()
    assert peek_alpha_code(db, ref.plant_id) == "AC"
    # counters are per plant
    assert peek_alpha_code(db, ref.other_plant_id) == "AA"


def test_rolled_back_allocation_is_not_consumed(db, ref):
    allocate_alpha_code(db, ref.plant_id)
    db.rollback()
    assert peek_alpha_code(db, ref.plant_id) == "AA"


def test_allocation_rolls_over_to_three_letters(db, ref):
    plant = db.get(Plant, ref.plant_id)
    plant.next_alpha_index = 675
    db.commit()
    assert allocate_alpha_code(db, ref.plant_id) == "ZZ"
    assert allocate_alpha_code(db, ref.plant_id) == "AAA"


def test_unknown_plant(db, ref):
    with pytest.raises(NotFoundError):
        allocate_alpha_code(db, "missing")
    with pytest.raises(NotFoundError):
        peek_alpha_code(db, "missing")


def test_find_or_create_reuses_current_node(db, ref):
    a = find_or_create_node(db, serial="S1", plant_id=ref.plant_id, product_id=ref.shell_id)
    b = find_or_create_node(db, serial="S1", plant_id=ref.plant_id, product_id=ref.shell_id)
    assert a.id == b.id
    other_plant = find_or_create_node(db, serial="S1", plant_id=ref.other_plant_id, product_id=ref.shell_id)
    assert other_plant.id != a.id


def test_resolve_prefers_current_node(db, ref):
    old = find_or_create_node(db, serial="S9", plant_id=ref.plant_id, product_id=ref.shell_id)
    new = find_or_create_node(db, serial="S10", plant_id=ref.plant_id, product_id=ref.shell_id)
    mark_replaced(db, old, new, actor=None)
    db.commit()

    with pytest.raises(NotFoundError):
        resolve_node(db, "S9")
    assert resolve_node(db, "S9", include_retired=True).id == old.id
    assert resolve_node(db, "S10").id == new.id


def test_resolve_scopes_by_plant(db, ref):
    p1 = find_or_create_node(db, serial="S1", plant_id=ref.plant_id, product_id=ref.shell_id)
    p2 = find_or_create_node(db, serial="S1", plant_id=ref.other_plant_id, product_id=ref.shell_id)
    db.commit()
    assert resolve_node(db, "S1", plant_id=ref.plant_id).id == p1.id
    assert resolve_node(db, "S1", plant_id=ref.other_plant_id).id == p2.id


def test_resolve_unknown_serial(db, ref):
    with pytest.raises(NotFoundError) as exc:
        resolve_node(db, "nope")
    assert exc.value.field == "serial"


def test_current_node_follows_chain(db, ref):
    nodes = [find_or_create_node(db, serial=f"C{i}", plant_id=ref.plant_id, product_id=ref.shell_id) for i in range(3)]
    mark_replaced(db, nodes[0], nodes[1], actor=None)
    mark_replaced(db, nodes[1], nodes[2], actor=None)
    db.commit()
    assert current_node(db, nodes[0]).id == nodes[2].id
    assert current_node(db, nodes[2]).id == nodes[2].id


def test_current_node_stops_on_cycle(db, ref):
    a = find_or_create_node(db, serial="X1", plant_id=ref.plant_id, product_id=ref.shell_id)
    b = find_or_create_node(db, serial="X2", plant_id=ref.plant_id, product_id=ref.shell_id)
    a.replace_by_sn_id = b.id
    b.replace_by_sn_id = a.id
    db.commit()
    assert current_node(db, a).id in {a.id, b.id}
    assert isinstance(current_node(db, b), SerialNumber)
