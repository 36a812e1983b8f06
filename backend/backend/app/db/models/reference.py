from __future__ import annotations
from sqlalchemy import String, Integer, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt

# Reference data owned by the admin screens. The genealogy core reads these rows;
# the only columns it writes are the two lock counters (Plant.next_alpha_index,
# WorkCenter.queue_version).

class Plant(Base, HasId, HasCreatedAt):
    __tablename__ = "ref_plant"
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # index of the next alpha code to hand out (0 -> "AA")
    next_alpha_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

class ProductionLine(Base, HasId, HasCreatedAt):
    __tablename__ = "ref_production_line"
    plant_id: Mapped[str] = mapped_column(ForeignKey("ref_plant.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)

    plant: Mapped[Plant] = relationship()

class WorkCenter(Base, HasId, HasCreatedAt):
    __tablename__ = "ref_work_center"
    plant_id: Mapped[str] = mapped_column(ForeignKey("ref_plant.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type_name: Mapped[str] = mapped_column(String(64), default="Manufacturing", nullable=False)
    queue_type: Mapped[str | None] = mapped_column(String(16), nullable=True)  # rolls / fitup / None
    # bumped at the start of every queue mutation; the UPDATE is the per-work-center lock
    queue_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    plant: Mapped[Plant] = relationship()

class Asset(Base, HasId, HasCreatedAt):
    __tablename__ = "ref_asset"
    work_center_id: Mapped[str] = mapped_column(ForeignKey("ref_work_center.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)

class Product(Base, HasId, HasCreatedAt):
    __tablename__ = "ref_product"
    product_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tank_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tank_type: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    system_type: Mapped[str] = mapped_column(String(24), nullable=False, index=True)  # plate/shell/head/assembled/sellable
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

Index("ix_ref_product_type_size", Product.system_type, Product.tank_size)

class Vendor(Base, HasId, HasCreatedAt):
    __tablename__ = "ref_vendor"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    vendor_type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)  # mill/processor/head
    is_lot_tracked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

class Operator(Base, HasId, HasCreatedAt):
    __tablename__ = "ref_operator"
    employee_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)

class BarcodeCard(Base, HasId, HasCreatedAt):
    __tablename__ = "ref_barcode_card"
    card_value: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str | None] = mapped_column(String(64), nullable=True)
