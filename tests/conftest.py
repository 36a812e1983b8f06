"""
Pytest configuration: a fresh SQLite file database per test, seeded with one
plant's reference data, plus a FastAPI TestClient bound to it.
"""

import os
from types import SimpleNamespace

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.db.base import Base
from app.db import models  # noqa: F401
from app.db.models.reference import (
    Asset,
    BarcodeCard,
    Operator,
    Plant,
    Product,
    ProductionLine,
    Vendor,
    WorkCenter,
)
from app.db.session import get_db, make_engine
from services.genealogy.identity import find_or_create_node
from services.material_queue import service as queue


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'mes.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ref(db):
    """Reference data for plant P1 (and an empty second plant). Only ids are exposed."""
    p1 = Plant(code="P1", name="Plant One")
    p2 = Plant(code="P2", name="Plant Two")
    db.add_all([p1, p2])
    db.flush()

    line = ProductionLine(plant_id=p1.id, name="Line 1")
    rolls = WorkCenter(plant_id=p1.id, name="Rolls", type_name="Rolls", queue_type="rolls")
    fitup = WorkCenter(plant_id=p1.id, name="Fit-up", type_name="Fitup", queue_type="fitup")
    assembly = WorkCenter(plant_id=p1.id, name="Long Seam", type_name="Manufacturing")
    hydro = WorkCenter(plant_id=p1.id, name="Hydro", type_name="Hydro")
    fitup_p2 = WorkCenter(plant_id=p2.id, name="Fit-up P2", type_name="Fitup", queue_type="fitup")
    db.add_all([line, rolls, fitup, assembly, hydro, fitup_p2])
    db.flush()

    asset = Asset(work_center_id=assembly.id, name="Welder A")
    plate = Product(product_number="PL-120", tank_size=120, tank_type="Plate", system_type="plate")
    shell = Product(product_number="SH-120", tank_size=120, tank_type="120 gal", system_type="shell")
    shell_250 = Product(product_number="SH-250", tank_size=250, tank_type="250 gal", system_type="shell")
    head = Product(product_number="HD-120", tank_size=120, tank_type="Head", system_type="head")
    assembled = Product(product_number="AS-120", tank_size=120, tank_type="Assembly", system_type="assembled")
    sellable = Product(product_number="TK-120", tank_size=120, tank_type="Sellable", system_type="sellable")
    mill = Vendor(name="North Mill", vendor_type="mill")
    processor = Vendor(name="Coil Works", vendor_type="processor")
    head_lot = Vendor(name="Lot Heads", vendor_type="head", is_lot_tracked=True)
    head_heat = Vendor(name="Heat Heads", vendor_type="head", is_lot_tracked=False)
    operator = Operator(employee_number="1001", display_name="Pat Operator")
    welder = Operator(employee_number="2002", display_name="Sam Welder")
    cards = [BarcodeCard(card_value="01", color="Red"), BarcodeCard(card_value="02", color="Blue")]
    db.add_all([asset, plate, shell, shell_250, head, assembled, sellable, mill, processor,
                head_lot, head_heat, operator, welder, *cards])
    db.commit()

    return SimpleNamespace(
        plant_id=p1.id,
        other_plant_id=p2.id,
        line_id=line.id,
        rolls_wc=rolls.id,
        fitup_wc=fitup.id,
        assembly_wc=assembly.id,
        hydro_wc=hydro.id,
        fitup_wc_p2=fitup_p2.id,
        asset_id=asset.id,
        plate_id=plate.id,
        shell_id=shell.id,
        shell_250_id=shell_250.id,
        head_id=head.id,
        assembled_id=assembled.id,
        sellable_id=sellable.id,
        mill_id=mill.id,
        processor_id=processor.id,
        head_lot_vendor_id=head_lot.id,
        head_heat_vendor_id=head_heat.id,
        operator_id=operator.id,
        welder_id=welder.id,
    )


@pytest.fixture
def make_shell(db, ref):
    def _make(serial, product_id=None, plant_id=None):
        node = find_or_create_node(
            db,
            serial=serial,
            plant_id=plant_id or ref.plant_id,
            product_id=product_id or ref.shell_id,
        )
        db.commit()
        return node
    return _make


@pytest.fixture
def draw_head(db, ref):
    """Queue a lot-tracked head at fit-up and draw it; returns the lot number."""
    def _draw(lot, card="01", work_center_id=None):
        wc = work_center_id or ref.fitup_wc
        queue.enqueue(db, wc, {
            "product_id": ref.head_id,
            "vendor_head_id": ref.head_lot_vendor_id,
            "lot_number": lot,
            "card_code": card,
        })
        summary = queue.advance(db, wc)
        assert summary["lot_number"] == lot
        return lot
    return _draw


@pytest.fixture
def build_assembly(db, ref, make_shell, draw_head):
    from services.assembly import service as assembly

    def _build(shells=("S1", "S2"), left="L100", right="L200"):
        for s in shells:
            make_shell(s)
        draw_head(left, card="01")
        draw_head(right, card="02")
        return assembly.create_assembly(
            db,
            shells=list(shells),
            left_head_lot_id=left,
            right_head_lot_id=right,
            tank_size=120,
            work_center_id=ref.assembly_wc,
            production_line_id=ref.line_id,
            operator_id=ref.operator_id,
            asset_id=ref.asset_id,
            welder_ids=[ref.welder_id],
        )
    return _build


@pytest.fixture
def client(session_factory, ref):
    from main import app

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
