"""
Vial Tracking Types
Shared value types for inventory records, vials, dose logs and completions
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple


class TimeOfDay(enum.Enum):
    """When a scheduled dose is taken"""
    AM = "AM"
    PM = "PM"


class ActiveVialStatus(enum.Enum):
    """Coarse status of the active vial on an inventory record"""
    NONE = "NONE"
    IN_USE = "IN_USE"
    FINISHED = "FINISHED"
    DISCARDED = "DISCARDED"


class VialCompletionType(enum.Enum):
    """Why a vial left service"""
    FULLY_USED = "fully_used"        # All doses consumed normally
    PARTIAL_WASTE = "partial_waste"  # Some doses wasted/unused
    EXPIRED = "expired"              # Expired with doses remaining
    TRANSFERRED = "transferred"      # Remaining doses moved to another vial
    CONTAMINATED = "contaminated"
    LOST = "lost"
    DAMAGED = "damaged"
    OTHER = "other"                  # Custom reason provided


class VialState(enum.Enum):
    """Lifecycle state of a single vial"""
    NONE = "none"
    RECONSTITUTED = "reconstituted"
    IN_USE = "in_use"
    FINISHED = "finished"
    DISCARDED = "discarded"
    EXPIRED = "expired"
    TRANSFERRED = "transferred"
    CONTAMINATED = "contaminated"
    LOST = "lost"
    DAMAGED = "damaged"
    OTHER = "other"

    @property
    def is_terminal(self) -> bool:
        return self not in (VialState.NONE, VialState.RECONSTITUTED, VialState.IN_USE)


TERMINAL_STATE_FOR_COMPLETION: Dict[VialCompletionType, VialState] = {
    VialCompletionType.FULLY_USED: VialState.FINISHED,
    VialCompletionType.PARTIAL_WASTE: VialState.DISCARDED,
    VialCompletionType.EXPIRED: VialState.EXPIRED,
    VialCompletionType.TRANSFERRED: VialState.TRANSFERRED,
    VialCompletionType.CONTAMINATED: VialState.CONTAMINATED,
    VialCompletionType.LOST: VialState.LOST,
    VialCompletionType.DAMAGED: VialState.DAMAGED,
    VialCompletionType.OTHER: VialState.OTHER,
}


class DataMode(enum.Enum):
    """Which record produced a dose figure"""
    DETAILED = "detailed"  # per-vial dose ledger
    COARSE = "coarse"      # inventory formula only


@dataclass(frozen=True)
class PeptideSchedule:
    frequency: str = "daily"  # "daily" | "specific_days"
    days_of_week: Tuple[int, ...] = ()  # Sunday (0) to Saturday (6)
    times: Tuple[TimeOfDay, ...] = (TimeOfDay.AM,)


@dataclass(frozen=True)
class InventoryRecord:
    """Coarse view of a batch of sealed vials"""
    id: str
    name: str
    num_vials: int = 0
    concentration_per_vial_mcg: Optional[float] = None  # total mcg in one vial
    typical_dose_mcg: Optional[float] = None
    active_vial_status: ActiveVialStatus = ActiveVialStatus.NONE
    low_stock_threshold: Optional[int] = None
    active_vial_reconstitution_date: Optional[datetime] = None
    active_vial_expiry_date: Optional[datetime] = None
    bac_water_volume_added: Optional[float] = None
    batch_number: Optional[str] = None
    storage_location: Optional[str] = None
    expiry_date: Optional[datetime] = None


@dataclass(frozen=True)
class Vial:
    """
    One physical vial tracked in detail.

    `is_active` is the legacy name for `is_current`. Either may be passed;
    after construction both always hold the same value.
    """
    id: str
    initial_amount_units: int = 0
    remaining_amount_units: int = 0
    is_current: Optional[bool] = None
    is_active: bool = False
    is_reconstituted: bool = False
    name: Optional[str] = None
    date_added: Optional[datetime] = None
    reconstitution_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    reconstitution_bac_water_ml: Optional[float] = None
    total_peptide_in_vial_mcg: Optional[float] = None
    typical_dose_mcg_for_calc: Optional[float] = None
    cost: Optional[float] = None  # purchase price of this vial
    notes: Optional[str] = None
    discarded_at: Optional[datetime] = None
    discard_reason: Optional[str] = None
    completion_type: Optional[VialCompletionType] = None

    def __post_init__(self):
        current = self.is_active if self.is_current is None else bool(self.is_current)
        object.__setattr__(self, "is_current", current)
        object.__setattr__(self, "is_active", current)

    @property
    def unit_cost(self) -> Optional[float]:
        """Cost of a single dose, when the vial price and capacity are known"""
        if self.cost is None or self.initial_amount_units <= 0:
            return None
        return self.cost / self.initial_amount_units


@dataclass(frozen=True)
class DoseLog:
    id: str
    vial_id: str
    dosage: float  # amount actually administered
    date: datetime
    time_of_day: Optional[TimeOfDay] = None
    unit: Optional[str] = None
    volume_drawn_ml: Optional[float] = None


@dataclass(frozen=True)
class Peptide:
    """Detailed schedule record: vials plus every logged dose"""
    id: str
    name: str
    schedule: PeptideSchedule = field(default_factory=PeptideSchedule)
    strength: Optional[str] = None
    dosage_unit: Optional[str] = "mcg"
    typical_dosage_units: Optional[float] = None
    start_date: Optional[datetime] = None
    notes: Optional[str] = None
    vials: Tuple[Vial, ...] = ()
    dose_logs: Tuple[DoseLog, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "vials", tuple(self.vials))
        object.__setattr__(self, "dose_logs", tuple(self.dose_logs))

    def get_vial(self, vial_id: str) -> Optional[Vial]:
        for vial in self.vials:
            if vial.id == vial_id:
                return vial
        return None


@dataclass(frozen=True)
class VialCompletion:
    """Terminal event closing a vial's lifecycle. Never mutated once created."""
    type: VialCompletionType
    remaining_doses: int
    wasted_doses: int
    completed_at: datetime
    vial_id: Optional[str] = None
    initial_amount_units: int = 0
    reason: Optional[str] = None
    transferred_to_vial_id: Optional[str] = None
    cost_wasted: Optional[float] = None
    completed_by: Optional[str] = None


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a single-vial transition; persist both together"""
    vial: Vial
    completion: Optional[VialCompletion] = None


@dataclass(frozen=True)
class PeptideTransition:
    """Outcome of a peptide-level transition; persist peptide and completions together"""
    peptide: Peptide
    completions: Tuple[VialCompletion, ...] = ()
    inventory: Optional[InventoryRecord] = None
    dose_log: Optional[DoseLog] = None

    @property
    def completion(self) -> Optional[VialCompletion]:
        return self.completions[-1] if self.completions else None


@dataclass(frozen=True)
class WasteBucket:
    count: int = 0
    doses_wasted: int = 0
    cost_wasted: float = 0.0


@dataclass(frozen=True)
class VialWastageStats:
    total_vials: int = 0
    total_doses_used: int = 0
    total_doses_wasted: int = 0
    total_cost_wasted: float = 0.0
    wastage_percentage: float = 0.0
    average_vial_utilization: float = 0.0  # fraction of each vial's doses not wasted
    waste_by_reason: Dict[VialCompletionType, WasteBucket] = field(default_factory=dict)


@dataclass(frozen=True)
class DoseSummary:
    """
    Dose counts for display, each tagged with the record that produced it.

    With vials but none current, `used` comes from the ledger while
    `remaining` falls back to the inventory formula.
    """
    total: int
    used: int
    remaining: int
    used_mode: DataMode
    remaining_mode: DataMode
    percentage_remaining: float

    @property
    def is_detailed(self) -> bool:
        return self.used_mode is DataMode.DETAILED and self.remaining_mode is DataMode.DETAILED


@dataclass(frozen=True)
class DoseDisplay:
    text: str
    is_low_stock: bool


@dataclass(frozen=True)
class VialStatus:
    is_expired: bool
    is_empty: bool
    is_current: bool
    can_use: bool
    remaining_doses: int
    days_until_expiry: Optional[int] = None
