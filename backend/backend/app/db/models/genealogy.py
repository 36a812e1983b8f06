from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, ForeignKey, Integer, Boolean, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, utcnow
from app.db.models.reference import Product

REL_COMPONENT = "component-of"
REL_REPLACES = "replaces"
REL_PRODUCED_FROM = "produced-from"

class SerialNumber(Base, HasId, HasCreatedAt):
    """A manufactured unit: raw plate, shell, head lot, assembly or sellable tank."""
    __tablename__ = "gen_serial_number"
    serial: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plant_id: Mapped[str] = mapped_column(ForeignKey("ref_plant.id"), nullable=False, index=True)
    product_id: Mapped[str | None] = mapped_column(ForeignKey("ref_product.id"), nullable=True, index=True)
    mill_vendor_id: Mapped[str | None] = mapped_column(ForeignKey("ref_vendor.id"), nullable=True)
    processor_vendor_id: Mapped[str | None] = mapped_column(ForeignKey("ref_vendor.id"), nullable=True)
    heads_vendor_id: Mapped[str | None] = mapped_column(ForeignKey("ref_vendor.id"), nullable=True)
    heat_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coil_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rs1_changed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rs2_changed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rs3_changed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rs4_changed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_obsolete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    replace_by_sn_id: Mapped[str | None] = mapped_column(ForeignKey("gen_serial_number.id"), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    modified_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    modified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    product: Mapped[Product | None] = relationship()

    @property
    def is_retired(self) -> bool:
        return self.replace_by_sn_id is not None or self.is_obsolete

Index("ix_gen_sn_plant_serial", SerialNumber.plant_id, SerialNumber.serial, SerialNumber.created_at)

class GenealogyEdge(Base):
    """Append-only ledger row. The integer id is the ledger sequence."""
    __tablename__ = "gen_edge"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_sn_id: Mapped[str | None] = mapped_column(ForeignKey("gen_serial_number.id"), nullable=True)
    to_sn_id: Mapped[str | None] = mapped_column(ForeignKey("gen_serial_number.id"), nullable=True)
    production_record_id: Mapped[str | None] = mapped_column(ForeignKey("mes_production_record.id"), nullable=True, index=True)
    kind: Mapped[str] = mapped_column("relationship", String(24), nullable=False)
    quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tank_location: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

Index("ix_gen_edge_from", GenealogyEdge.from_sn_id, GenealogyEdge.kind)
Index("ix_gen_edge_to", GenealogyEdge.to_sn_id, GenealogyEdge.kind)

class Assembly(Base, HasId, HasCreatedAt):
    __tablename__ = "gen_assembly"
    serial_number_id: Mapped[str] = mapped_column(ForeignKey("gen_serial_number.id"), nullable=False, unique=True)
    plant_id: Mapped[str] = mapped_column(ForeignKey("ref_plant.id"), nullable=False, index=True)
    alpha_code: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    tank_size: Mapped[int] = mapped_column(Integer, nullable=False)
    work_center_id: Mapped[str] = mapped_column(ForeignKey("ref_work_center.id"), nullable=False)
    asset_id: Mapped[str | None] = mapped_column(ForeignKey("ref_asset.id"), nullable=True)
    production_line_id: Mapped[str] = mapped_column(ForeignKey("ref_production_line.id"), nullable=False)
    operator_id: Mapped[str] = mapped_column(ForeignKey("ref_operator.id"), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    serial_number: Mapped[SerialNumber] = relationship()

Index("ix_gen_assembly_plant_alpha", Assembly.plant_id, Assembly.alpha_code, Assembly.is_active)
