from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, utcnow
from app.db.models.reference import WorkCenter, Operator, Asset

class ProductionRecord(Base, HasId, HasCreatedAt):
    __tablename__ = "mes_production_record"
    serial_number_id: Mapped[str] = mapped_column(ForeignKey("gen_serial_number.id"), nullable=False, index=True)
    work_center_id: Mapped[str] = mapped_column(ForeignKey("ref_work_center.id"), nullable=False, index=True)
    asset_id: Mapped[str | None] = mapped_column(ForeignKey("ref_asset.id"), nullable=True)
    production_line_id: Mapped[str | None] = mapped_column(ForeignKey("ref_production_line.id"), nullable=True)
    operator_id: Mapped[str | None] = mapped_column(ForeignKey("ref_operator.id"), nullable=True)
    record_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # Assembly / Reassembly / Rolls / Hydro
    inspection_result: Mapped[str | None] = mapped_column(String(32), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    work_center: Mapped[WorkCenter] = relationship()
    operator: Mapped[Operator | None] = relationship()
    asset: Mapped[Asset | None] = relationship()

class WelderLog(Base, HasId, HasCreatedAt):
    __tablename__ = "mes_welder_log"
    production_record_id: Mapped[str] = mapped_column(ForeignKey("mes_production_record.id"), nullable=False, index=True)
    operator_id: Mapped[str] = mapped_column(ForeignKey("ref_operator.id"), nullable=False, index=True)

# Defects and annotations are written by the inspection/annotation subsystems;
# the traceability reader only counts them.

class DefectLog(Base, HasId, HasCreatedAt):
    __tablename__ = "qms_defect_log"
    serial_number_id: Mapped[str] = mapped_column(ForeignKey("gen_serial_number.id"), nullable=False, index=True)
    production_record_id: Mapped[str | None] = mapped_column(ForeignKey("mes_production_record.id"), nullable=True)
    defect_code: Mapped[str] = mapped_column(String(32), nullable=False)
    is_repaired: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

class Annotation(Base, HasId, HasCreatedAt):
    __tablename__ = "qms_annotation"
    production_record_id: Mapped[str] = mapped_column(ForeignKey("mes_production_record.id"), nullable=False, index=True)
    annotation_type: Mapped[str] = mapped_column(String(64), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(512), nullable=True)

Index("ix_mes_prodrec_sn_time", ProductionRecord.serial_number_id, ProductionRecord.timestamp)
