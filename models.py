"""
Peptide Vial Tracker Database Models
SQLAlchemy ORM models for inventory, vials, dose logs and vial completions
"""

from datetime import datetime
from functools import lru_cache

from sqlalchemy import (
    create_engine, Column, Integer, String, Float, Text,
    DateTime, Boolean, ForeignKey, Enum
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from vial_types import (
    ActiveVialStatus, DoseLog, InventoryRecord, Peptide, PeptideSchedule,
    TimeOfDay, Vial, VialCompletion, VialCompletionType
)

Base = declarative_base()


class InventoryPeptide(Base):
    """Coarse stock record: sealed vials on hand and the active vial's status"""
    __tablename__ = 'inventory_peptides'

    id = Column(String(64), primary_key=True)  # shared with peptides.id
    name = Column(String(100), nullable=False)
    num_vials = Column(Integer, nullable=False, default=0)
    concentration_per_vial_mcg = Column(Float)  # total mcg in one vial
    typical_dose_mcg = Column(Float)
    storage_location = Column(String(100))
    expiry_date = Column(DateTime)  # for the whole batch
    batch_number = Column(String(50))
    low_stock_threshold = Column(Integer)

    # Currently active vial
    active_vial_status = Column(Enum(ActiveVialStatus), nullable=False, default=ActiveVialStatus.NONE)
    active_vial_reconstitution_date = Column(DateTime)
    active_vial_expiry_date = Column(DateTime)
    bac_water_volume_added = Column(Float)  # ml

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_record(self) -> InventoryRecord:
        return InventoryRecord(
            id=self.id,
            name=self.name,
            num_vials=self.num_vials or 0,
            concentration_per_vial_mcg=self.concentration_per_vial_mcg,
            typical_dose_mcg=self.typical_dose_mcg,
            active_vial_status=self.active_vial_status or ActiveVialStatus.NONE,
            low_stock_threshold=self.low_stock_threshold,
            active_vial_reconstitution_date=self.active_vial_reconstitution_date,
            active_vial_expiry_date=self.active_vial_expiry_date,
            bac_water_volume_added=self.bac_water_volume_added,
            batch_number=self.batch_number,
            storage_location=self.storage_location,
            expiry_date=self.expiry_date,
        )

    def apply_record(self, record: InventoryRecord) -> None:
        self.name = record.name
        self.num_vials = record.num_vials
        self.concentration_per_vial_mcg = record.concentration_per_vial_mcg
        self.typical_dose_mcg = record.typical_dose_mcg
        self.active_vial_status = record.active_vial_status
        self.low_stock_threshold = record.low_stock_threshold
        self.active_vial_reconstitution_date = record.active_vial_reconstitution_date
        self.active_vial_expiry_date = record.active_vial_expiry_date
        self.bac_water_volume_added = record.bac_water_volume_added
        self.batch_number = record.batch_number
        self.storage_location = record.storage_location
        self.expiry_date = record.expiry_date

    def __repr__(self):
        return f"<InventoryPeptide(name='{self.name}', vials={self.num_vials})>"


class SchedulePeptide(Base):
    """Detailed schedule record for a peptide: its vials and dose history"""
    __tablename__ = 'peptides'

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    strength = Column(String(100))  # e.g. "5000mcg/vial"
    dosage_unit = Column(String(20), default="mcg")
    typical_dosage_units = Column(Float)

    # Schedule
    schedule_frequency = Column(String(20), default="daily")
    schedule_days = Column(String(20))  # comma-separated, Sunday = 0
    schedule_times = Column(String(10), default="AM")  # comma-separated AM/PM

    start_date = Column(DateTime)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    vials = relationship("VialRecord", back_populates="peptide", cascade="all, delete-orphan")
    dose_logs = relationship("DoseLogRecord", back_populates="peptide", cascade="all, delete-orphan")

    def to_snapshot(self) -> Peptide:
        days = tuple(int(d) for d in (self.schedule_days or "").split(",") if d)
        times = tuple(TimeOfDay(t) for t in (self.schedule_times or "AM").split(",") if t)
        return Peptide(
            id=self.id,
            name=self.name,
            schedule=PeptideSchedule(
                frequency=self.schedule_frequency or "daily",
                days_of_week=days,
                times=times or (TimeOfDay.AM,),
            ),
            strength=self.strength,
            dosage_unit=self.dosage_unit,
            typical_dosage_units=self.typical_dosage_units,
            start_date=self.start_date,
            notes=self.notes,
            vials=[v.to_snapshot() for v in sorted(self.vials, key=lambda v: v.seq or 0)],
            dose_logs=[log.to_snapshot() for log in sorted(self.dose_logs, key=lambda l: l.seq or 0)],
        )

    def __repr__(self):
        return f"<SchedulePeptide(name='{self.name}')>"


class VialRecord(Base):
    """Individual vial tracking"""
    __tablename__ = 'vials'

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True)
    peptide_id = Column(String(64), ForeignKey('peptides.id'), nullable=False)
    name = Column(String(100))

    # Dose ledger
    initial_amount_units = Column(Integer, nullable=False, default=0)
    remaining_amount_units = Column(Integer, nullable=False, default=0)

    # Status
    is_current = Column(Boolean, default=False)
    is_active = Column(Boolean, default=False)  # legacy mirror of is_current
    is_reconstituted = Column(Boolean, default=False)
    completion_type = Column(Enum(VialCompletionType))

    # Reconstitution
    reconstitution_date = Column(DateTime)
    expiration_date = Column(DateTime)
    reconstitution_bac_water_ml = Column(Float)
    total_peptide_in_vial_mcg = Column(Float)
    typical_dose_mcg_for_calc = Column(Float)

    cost = Column(Float)
    notes = Column(Text)
    date_added = Column(DateTime)
    discarded_at = Column(DateTime)
    discard_reason = Column(String(200))

    # Relationships
    peptide = relationship("SchedulePeptide", back_populates="vials")

    def to_snapshot(self) -> Vial:
        return Vial(
            id=self.id,
            name=self.name,
            initial_amount_units=self.initial_amount_units or 0,
            remaining_amount_units=self.remaining_amount_units or 0,
            is_current=bool(self.is_current),
            is_reconstituted=bool(self.is_reconstituted),
            completion_type=self.completion_type,
            reconstitution_date=self.reconstitution_date,
            expiration_date=self.expiration_date,
            reconstitution_bac_water_ml=self.reconstitution_bac_water_ml,
            total_peptide_in_vial_mcg=self.total_peptide_in_vial_mcg,
            typical_dose_mcg_for_calc=self.typical_dose_mcg_for_calc,
            cost=self.cost,
            notes=self.notes,
            date_added=self.date_added,
            discarded_at=self.discarded_at,
            discard_reason=self.discard_reason,
        )

    def apply_snapshot(self, vial: Vial) -> None:
        self.name = vial.name
        self.initial_amount_units = vial.initial_amount_units
        self.remaining_amount_units = vial.remaining_amount_units
        self.is_current = vial.is_current
        self.is_active = vial.is_current
        self.is_reconstituted = vial.is_reconstituted
        self.completion_type = vial.completion_type
        self.reconstitution_date = vial.reconstitution_date
        self.expiration_date = vial.expiration_date
        self.reconstitution_bac_water_ml = vial.reconstitution_bac_water_ml
        self.total_peptide_in_vial_mcg = vial.total_peptide_in_vial_mcg
        self.typical_dose_mcg_for_calc = vial.typical_dose_mcg_for_calc
        self.cost = vial.cost
        self.notes = vial.notes
        self.date_added = vial.date_added
        self.discarded_at = vial.discarded_at
        self.discard_reason = vial.discard_reason

    def __repr__(self):
        return f"<VialRecord(id='{self.id}', remaining={self.remaining_amount_units}/{self.initial_amount_units})>"


class DoseLogRecord(Base):
    """Individual dose log"""
    __tablename__ = 'dose_logs'

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True)
    peptide_id = Column(String(64), ForeignKey('peptides.id'), nullable=False)
    vial_id = Column(String(64), ForeignKey('vials.id'), nullable=False)

    date = Column(DateTime, nullable=False)
    time_of_day = Column(Enum(TimeOfDay))
    dosage = Column(Float, nullable=False)
    unit = Column(String(20))
    volume_drawn_ml = Column(Float)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    peptide = relationship("SchedulePeptide", back_populates="dose_logs")

    @classmethod
    def from_snapshot(cls, peptide_id: str, log: DoseLog) -> "DoseLogRecord":
        return cls(
            id=log.id,
            peptide_id=peptide_id,
            vial_id=log.vial_id,
            date=log.date,
            time_of_day=log.time_of_day,
            dosage=log.dosage,
            unit=log.unit,
            volume_drawn_ml=log.volume_drawn_ml,
        )

    def to_snapshot(self) -> DoseLog:
        return DoseLog(
            id=self.id,
            vial_id=self.vial_id,
            dosage=self.dosage,
            date=self.date,
            time_of_day=self.time_of_day,
            unit=self.unit,
            volume_drawn_ml=self.volume_drawn_ml,
        )

    def __repr__(self):
        return f"<DoseLogRecord(dosage={self.dosage}, date={self.date})>"


class VialCompletionRecord(Base):
    """Append-only history of vials leaving service"""
    __tablename__ = 'vial_completions'

    id = Column(Integer, primary_key=True)
    vial_id = Column(String(64), ForeignKey('vials.id'), nullable=False, unique=True)
    peptide_id = Column(String(64), ForeignKey('peptides.id'), nullable=False)

    type = Column(Enum(VialCompletionType), nullable=False)
    remaining_doses = Column(Integer, nullable=False)
    wasted_doses = Column(Integer, nullable=False)
    initial_amount_units = Column(Integer, nullable=False, default=0)
    reason = Column(Text)
    transferred_to_vial_id = Column(String(64))
    cost_wasted = Column(Float)
    completed_at = Column(DateTime, nullable=False)
    completed_by = Column(String(64))

    @classmethod
    def from_snapshot(cls, peptide_id: str, completion: VialCompletion) -> "VialCompletionRecord":
        return cls(
            vial_id=completion.vial_id,
            peptide_id=peptide_id,
            type=completion.type,
            remaining_doses=completion.remaining_doses,
            wasted_doses=completion.wasted_doses,
            initial_amount_units=completion.initial_amount_units,
            reason=completion.reason,
            transferred_to_vial_id=completion.transferred_to_vial_id,
            cost_wasted=completion.cost_wasted,
            completed_at=completion.completed_at,
            completed_by=completion.completed_by,
        )

    def to_snapshot(self) -> VialCompletion:
        return VialCompletion(
            type=self.type,
            remaining_doses=self.remaining_doses,
            wasted_doses=self.wasted_doses,
            completed_at=self.completed_at,
            vial_id=self.vial_id,
            initial_amount_units=self.initial_amount_units or 0,
            reason=self.reason,
            transferred_to_vial_id=self.transferred_to_vial_id,
            cost_wasted=self.cost_wasted,
            completed_by=self.completed_by,
        )

    def __repr__(self):
        return f"<VialCompletionRecord(vial='{self.vial_id}', type={self.type})>"


# Database initialization functions
@lru_cache(maxsize=None)
def get_engine(db_url="sqlite:///peptide_tracker.db", echo=False):
    """One engine per database URL"""
    return create_engine(db_url, echo=echo)


def create_database(db_url="sqlite:///peptide_tracker.db"):
    """Create all tables in the database"""
    engine = get_engine(db_url)
    Base.metadata.create_all(engine)
    return engine


def get_session(db_url="sqlite:///peptide_tracker.db"):
    """Get a database session"""
    Session = sessionmaker(bind=get_engine(db_url))
    return Session()


if __name__ == "__main__":
    # Create tables if running this file directly
    print("Creating database tables...")
    create_database()
    print("Database tables created successfully!")
