"""
Database Operations
Storage for inventory records and vial ledgers, driven by the vial lifecycle

Every state transition is computed by vial_lifecycle on a snapshot and then
written here in a single commit: updated vials, new or removed dose logs, any
vial completion, and the inventory record.
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

import vial_lifecycle
from calculator import dose_summary
from errors import InvalidInput
from models import (
    DoseLogRecord, InventoryPeptide, SchedulePeptide, VialCompletionRecord, VialRecord
)
from vial_types import (
    DoseLog, DoseSummary, InventoryRecord, Peptide, PeptideSchedule, PeptideTransition,
    TimeOfDay, VialCompletion, VialCompletionType, VialWastageStats
)
from wastage import aggregate, stats_by_peptide

logger = logging.getLogger(__name__)

# Stock columns callers may edit directly; ids and timestamps are managed here
INVENTORY_FIELDS = frozenset({
    "name",
    "num_vials",
    "concentration_per_vial_mcg",
    "typical_dose_mcg",
    "low_stock_threshold",
    "batch_number",
    "storage_location",
    "expiry_date",
    "bac_water_volume_added",
    "active_vial_status",
})


class PeptideDB:
    """Database operations for peptide inventory and vial ledgers"""

    def __init__(self, session: Session):
        self.session = session

    # ==================== INVENTORY OPERATIONS ====================

    def add_inventory_peptide(
        self,
        name: str,
        num_vials: int,
        concentration_per_vial_mcg: Optional[float] = None,
        typical_dose_mcg: Optional[float] = None,
        low_stock_threshold: Optional[int] = None,
        batch_number: Optional[str] = None,
        storage_location: Optional[str] = None,
        expiry_date: Optional[datetime] = None,
        bac_water_volume_added: Optional[float] = None,
        schedule: Optional[PeptideSchedule] = None,
        dosage_unit: str = "mcg",
        notes: Optional[str] = None,
        peptide_id: Optional[str] = None
    ) -> InventoryRecord:
        """Add a peptide to inventory along with its (empty) schedule record"""
        peptide_id = peptide_id or uuid.uuid4().hex
        schedule = schedule or PeptideSchedule()

        inventory = InventoryPeptide(
            id=peptide_id,
            name=name,
            num_vials=num_vials,
            concentration_per_vial_mcg=concentration_per_vial_mcg,
            typical_dose_mcg=typical_dose_mcg,
            low_stock_threshold=low_stock_threshold,
            batch_number=batch_number,
            storage_location=storage_location,
            expiry_date=expiry_date,
            bac_water_volume_added=bac_water_volume_added,
        )
        peptide = SchedulePeptide(
            id=peptide_id,
            name=name,
            strength=f"{concentration_per_vial_mcg}mcg/vial" if concentration_per_vial_mcg else None,
            dosage_unit=dosage_unit,
            typical_dosage_units=typical_dose_mcg,
            schedule_frequency=schedule.frequency,
            schedule_days=",".join(str(d) for d in schedule.days_of_week),
            schedule_times=",".join(t.value for t in schedule.times),
            start_date=datetime.now(),
            notes=notes,
        )

        self.session.add_all([inventory, peptide])
        self.session.commit()
        logger.info("Added %s to inventory (%d vials)", name, num_vials)
        return inventory.to_record()

    def _inventory_row(self, peptide_id: str) -> Optional[InventoryPeptide]:
        return self.session.query(InventoryPeptide).filter(InventoryPeptide.id == peptide_id).first()

    def _peptide_row(self, peptide_id: str) -> Optional[SchedulePeptide]:
        return self.session.query(SchedulePeptide).filter(SchedulePeptide.id == peptide_id).first()

    def get_inventory_record(self, peptide_id: str) -> Optional[InventoryRecord]:
        """Get inventory record by ID"""
        row = self._inventory_row(peptide_id)
        return row.to_record() if row else None

    def get_inventory_by_name(self, name: str) -> Optional[InventoryRecord]:
        row = self.session.query(InventoryPeptide).filter(InventoryPeptide.name == name).first()
        return row.to_record() if row else None

    def list_inventory(self) -> List[InventoryRecord]:
        """List all inventory records"""
        rows = self.session.query(InventoryPeptide).order_by(InventoryPeptide.name).all()
        return [row.to_record() for row in rows]

    def update_inventory(self, peptide_id: str, **kwargs) -> Optional[InventoryRecord]:
        """Update stock attributes (vial count, concentration, threshold, ...)"""
        unknown = sorted(set(kwargs) - INVENTORY_FIELDS)
        if unknown:
            raise InvalidInput(f"Cannot update inventory fields: {', '.join(unknown)}")
        row = self._inventory_row(peptide_id)
        if row:
            for key, value in kwargs.items():
                setattr(row, key, value)
            row.updated_at = datetime.utcnow()
            self.session.commit()
        return row.to_record() if row else None

    # ==================== LEDGER READS ====================

    def get_peptide(self, peptide_id: str) -> Optional[Peptide]:
        """Get the detailed schedule record (vials + dose logs)"""
        row = self._peptide_row(peptide_id)
        return row.to_snapshot() if row else None

    def dose_summary(self, peptide_id: str) -> Optional[DoseSummary]:
        """Total/used/remaining doses, preferring the detailed ledger"""
        inventory = self.get_inventory_record(peptide_id)
        peptide = self.get_peptide(peptide_id)
        if inventory is None and peptide is None:
            return None
        return dose_summary(peptide, inventory)

    def get_recent_dose_logs(self, days: int = 7) -> List[DoseLog]:
        """Get dose logs within X days"""
        cutoff = datetime.now() - timedelta(days=days)
        rows = self.session.query(DoseLogRecord).filter(
            DoseLogRecord.date >= cutoff
        ).order_by(DoseLogRecord.date.desc()).all()
        return [row.to_snapshot() for row in rows]

    # ==================== VIAL TRANSITIONS ====================

    def activate_vial_from_inventory(
        self,
        peptide_id: str,
        reconstitution_date: Optional[datetime] = None,
        bac_water_ml: Optional[float] = None,
        retire_as: Optional[VialCompletionType] = None,
        reason: Optional[str] = None,
        cost: Optional[float] = None
    ) -> Optional[PeptideTransition]:
        """Open a sealed vial and make it the current one"""
        inventory = self.get_inventory_record(peptide_id)
        if inventory is None:
            return None
        transition = vial_lifecycle.activate_from_inventory(
            inventory,
            self.get_peptide(peptide_id),
            reconstitution_date=reconstitution_date,
            bac_water_ml=bac_water_ml,
            retire_as=retire_as,
            reason=reason,
            cost=cost,
        )
        return self._persist(transition)

    def set_current_vial(
        self,
        peptide_id: str,
        vial_id: str,
        retire_as: Optional[VialCompletionType] = None,
        reason: Optional[str] = None
    ) -> Optional[PeptideTransition]:
        """Make an already reconstituted vial the current one"""
        peptide = self.get_peptide(peptide_id)
        if peptide is None or peptide.get_vial(vial_id) is None:
            return None
        return self._persist(
            vial_lifecycle.activate_vial(peptide, vial_id, retire_as=retire_as, reason=reason)
        )

    def log_dose(
        self,
        peptide_id: str,
        dosage: float,
        date: Optional[datetime] = None,
        time_of_day: Optional[TimeOfDay] = None,
        unit: Optional[str] = None,
        volume_drawn_ml: Optional[float] = None
    ) -> Optional[PeptideTransition]:
        """Log a dose against the current vial"""
        peptide = self.get_peptide(peptide_id)
        if peptide is None:
            return None
        return self._persist(vial_lifecycle.record_dose(
            peptide,
            dosage,
            date=date,
            time_of_day=time_of_day,
            unit=unit,
            volume_drawn_ml=volume_drawn_ml,
        ))

    def undo_dose_log(self, peptide_id: str, log_id: str) -> Optional[PeptideTransition]:
        """Delete a dose log at the user's request"""
        peptide = self.get_peptide(peptide_id)
        if peptide is None or not any(log.id == log_id for log in peptide.dose_logs):
            return None
        return self._persist(vial_lifecycle.undo_dose_log(peptide, log_id))

    def complete_vial(
        self,
        peptide_id: str,
        vial_id: str,
        completion_type: VialCompletionType,
        reason: Optional[str] = None,
        transferred_to_vial_id: Optional[str] = None,
        completed_by: Optional[str] = None
    ) -> Optional[PeptideTransition]:
        """Take a vial out of service"""
        peptide = self.get_peptide(peptide_id)
        if peptide is None or peptide.get_vial(vial_id) is None:
            return None
        return self._persist(vial_lifecycle.complete_peptide_vial(
            peptide,
            vial_id,
            completion_type,
            reason=reason,
            transferred_to_vial_id=transferred_to_vial_id,
            completed_by=completed_by,
        ))

    def sync_active_vial_status(self, peptide_id: str) -> bool:
        """Bring the inventory active_vial_status in line with the vial ledger"""
        row = self._inventory_row(peptide_id)
        if row is None:
            return False
        current = row.to_record()
        synced = vial_lifecycle.sync_inventory_status(current, self.get_peptide(peptide_id))
        if synced is current:
            return False
        row.apply_record(synced)
        row.updated_at = datetime.utcnow()
        self.session.commit()
        return True

    def _persist(self, transition: PeptideTransition) -> PeptideTransition:
        """Write a transition's peptide, completions and inventory in one commit"""
        peptide = transition.peptide
        try:
            row = self._peptide_row(peptide.id)
            if row is None:
                row = SchedulePeptide(
                    id=peptide.id,
                    name=peptide.name,
                    strength=peptide.strength,
                    dosage_unit=peptide.dosage_unit,
                    typical_dosage_units=peptide.typical_dosage_units,
                    start_date=datetime.now(),
                )
                self.session.add(row)

            vial_rows = {v.id: v for v in row.vials}
            for vial in peptide.vials:
                vial_row = vial_rows.get(vial.id)
                if vial_row is None:
                    vial_row = VialRecord(id=vial.id)
                    row.vials.append(vial_row)
                vial_row.apply_snapshot(vial)
            self.session.flush()

            log_rows = {log.id: log for log in row.dose_logs}
            kept = {log.id for log in peptide.dose_logs}
            for log in peptide.dose_logs:
                if log.id not in log_rows:
                    row.dose_logs.append(DoseLogRecord.from_snapshot(peptide.id, log))
            for log_id, log_row in log_rows.items():
                if log_id not in kept:
                    row.dose_logs.remove(log_row)

            for completion in transition.completions:
                self.session.add(VialCompletionRecord.from_snapshot(peptide.id, completion))

            inventory_row = self._inventory_row(peptide.id)
            if inventory_row is not None:
                inventory = transition.inventory or inventory_row.to_record()
                inventory_row.apply_record(vial_lifecycle.sync_inventory_status(inventory, peptide))
                inventory_row.updated_at = datetime.utcnow()

            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("Failed to persist vial transition for %s", peptide.name)
            raise

        for completion in transition.completions:
            logger.info(
                "Recorded %s completion for vial %s of %s",
                completion.type.value, completion.vial_id, peptide.name,
            )
        return transition

    # ==================== COMPLETIONS & WASTAGE ====================

    def list_completions(self, peptide_id: Optional[str] = None) -> List[VialCompletion]:
        """Completion history, oldest first"""
        query = self.session.query(VialCompletionRecord)
        if peptide_id:
            query = query.filter(VialCompletionRecord.peptide_id == peptide_id)
        rows = query.order_by(VialCompletionRecord.completed_at, VialCompletionRecord.id).all()
        return [row.to_snapshot() for row in rows]

    def wastage_stats(self, peptide_id: Optional[str] = None) -> VialWastageStats:
        """Wastage across all peptides, or just one"""
        return aggregate(self.list_completions(peptide_id))

    def wastage_by_peptide(self) -> Dict[str, VialWastageStats]:
        grouped: Dict[str, List[VialCompletion]] = defaultdict(list)
        for row in self.session.query(VialCompletionRecord).all():
            grouped[row.peptide_id].append(row.to_snapshot())
        return stats_by_peptide(grouped)
