"""
Vial Lifecycle
State transitions for vials: reconstitution, activation, dosing and completion

    NONE -> RECONSTITUTED -> IN_USE -> FINISHED | DISCARDED | EXPIRED | TRANSFERRED
                                       | CONTAMINATED | LOST | DAMAGED | OTHER

Every function here is pure: it takes a snapshot and returns a new one. A
VialCompletion is produced exactly when a vial enters a terminal state, and
the caller must persist the updated vial together with that completion.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from calculator import PeptideCalculator, current_vial
from config import Config
from errors import InvalidInput, InvariantViolation
from vial_types import (
    ActiveVialStatus, DoseLog, InventoryRecord, Peptide, PeptideTransition,
    TERMINAL_STATE_FOR_COMPLETION, TimeOfDay, TransitionResult, Vial,
    VialCompletion, VialCompletionType, VialState, VialStatus
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def vial_state(vial: Vial) -> VialState:
    """Derive the lifecycle state of a vial from its fields"""
    if vial.completion_type is not None:
        return TERMINAL_STATE_FOR_COMPLETION[vial.completion_type]
    if vial.is_current:
        return VialState.IN_USE
    if vial.is_reconstituted:
        return VialState.RECONSTITUTED
    return VialState.NONE


def is_terminal(vial: Vial) -> bool:
    return vial_state(vial).is_terminal


def _replace_vial(peptide: Peptide, updated: Vial) -> Peptide:
    vials = tuple(updated if v.id == updated.id else v for v in peptide.vials)
    return replace(peptide, vials=vials)


# ==================== RECONSTITUTION ====================

def new_vial(
    vial_id: Optional[str] = None,
    name: Optional[str] = None,
    total_peptide_in_vial_mcg: Optional[float] = None,
    cost: Optional[float] = None,
    date_added: Optional[datetime] = None
) -> Vial:
    """A sealed vial that has not been reconstituted yet"""
    return Vial(
        id=vial_id or _new_id(),
        name=name,
        total_peptide_in_vial_mcg=total_peptide_in_vial_mcg,
        cost=cost,
        date_added=date_added or datetime.now(),
    )


def reconstitute(
    vial: Vial,
    bac_water_ml: float,
    typical_dose_mcg: Optional[float],
    total_peptide_mcg: Optional[float] = None,
    reconstitution_date: Optional[datetime] = None,
    shelf_life_days: int = Config.VIAL_SHELF_LIFE_DAYS
) -> TransitionResult:
    """
    NONE -> RECONSTITUTED

    Fixes initial_amount_units from the vial capacity at this instant; it is
    never recalculated afterwards.
    """
    if vial_state(vial) is not VialState.NONE:
        raise InvariantViolation(
            f"Vial {vial.id} is already {vial_state(vial).value}", vial_id=vial.id
        )
    if bac_water_ml is None or bac_water_ml <= 0:
        raise InvalidInput("BAC water volume must be greater than 0")

    total_mcg = total_peptide_mcg if total_peptide_mcg is not None else vial.total_peptide_in_vial_mcg
    capacity = PeptideCalculator.total_doses_per_vial(total_mcg, typical_dose_mcg)
    reconstituted_at = reconstitution_date or datetime.now()

    updated = replace(
        vial,
        is_reconstituted=True,
        initial_amount_units=capacity,
        remaining_amount_units=capacity,
        reconstitution_date=reconstituted_at,
        expiration_date=reconstituted_at + timedelta(days=shelf_life_days),
        reconstitution_bac_water_ml=bac_water_ml,
        total_peptide_in_vial_mcg=total_mcg,
        typical_dose_mcg_for_calc=typical_dose_mcg,
    )
    logger.debug("Reconstituted vial %s with %s ml: %d doses", vial.id, bac_water_ml, capacity)
    return TransitionResult(vial=updated)


# ==================== COMPLETION ====================

def complete_vial(
    vial: Vial,
    completion_type: VialCompletionType,
    reason: Optional[str] = None,
    transfer_target: Optional[Vial] = None,
    unit_cost: Optional[float] = None,
    completed_at: Optional[datetime] = None,
    completed_by: Optional[str] = None
) -> TransitionResult:
    """
    RECONSTITUTED/IN_USE -> terminal

    Remaining doses are wasted for every type except FULLY_USED and
    TRANSFERRED. A transfer needs a different, non-terminal target vial.
    """
    state = vial_state(vial)
    if state not in (VialState.RECONSTITUTED, VialState.IN_USE):
        if state.is_terminal:
            message = f"Vial {vial.id} is already {state.value}"
        else:
            message = f"Vial {vial.id} has not been reconstituted"
        raise InvariantViolation(message, vial_id=vial.id)

    completion_type = VialCompletionType(completion_type)
    remaining = max(0, vial.remaining_amount_units)
    transferred_to = None

    if completion_type is VialCompletionType.TRANSFERRED:
        if transfer_target is None:
            raise InvariantViolation(
                f"Transfer from vial {vial.id} needs a target vial", vial_id=vial.id
            )
        if transfer_target.id == vial.id:
            raise InvariantViolation(
                f"Vial {vial.id} cannot be transferred to itself", vial_id=vial.id
            )
        if is_terminal(transfer_target):
            raise InvariantViolation(
                f"Transfer target {transfer_target.id} is already "
                f"{vial_state(transfer_target).value}",
                vial_id=transfer_target.id,
            )
        transferred_to = transfer_target.id

    if completion_type in (VialCompletionType.FULLY_USED, VialCompletionType.TRANSFERRED):
        wasted = 0
    else:
        wasted = remaining

    if unit_cost is None:
        unit_cost = vial.unit_cost
    cost_wasted = wasted * unit_cost if unit_cost is not None else None

    completed_at = completed_at or datetime.now()
    completion = VialCompletion(
        type=completion_type,
        remaining_doses=remaining,
        wasted_doses=wasted,
        completed_at=completed_at,
        vial_id=vial.id,
        initial_amount_units=vial.initial_amount_units,
        reason=reason,
        transferred_to_vial_id=transferred_to,
        cost_wasted=cost_wasted,
        completed_by=completed_by,
    )

    wasteful = completion_type is not VialCompletionType.FULLY_USED
    updated = replace(
        vial,
        is_current=False,
        is_active=False,
        completion_type=completion_type,
        discarded_at=completed_at,
        discard_reason=(reason or completion_type.value) if wasteful else None,
    )
    logger.info(
        "Vial %s completed as %s (%d remaining, %d wasted)",
        vial.id, completion_type.value, remaining, wasted,
    )
    return TransitionResult(vial=updated, completion=completion)


def complete_peptide_vial(
    peptide: Peptide,
    vial_id: str,
    completion_type: VialCompletionType,
    reason: Optional[str] = None,
    transferred_to_vial_id: Optional[str] = None,
    unit_cost: Optional[float] = None,
    completed_at: Optional[datetime] = None,
    completed_by: Optional[str] = None
) -> PeptideTransition:
    """Complete one of a peptide's vials, resolving a transfer target among its vials"""
    vial = peptide.get_vial(vial_id)
    if vial is None:
        raise InvariantViolation(f"Vial {vial_id} does not belong to {peptide.name}", vial_id=vial_id)

    target = None
    if transferred_to_vial_id is not None:
        target = peptide.get_vial(transferred_to_vial_id)
        if target is None:
            raise InvariantViolation(
                f"Transfer target {transferred_to_vial_id} does not exist",
                vial_id=transferred_to_vial_id,
            )

    result = complete_vial(
        vial,
        completion_type,
        reason=reason,
        transfer_target=target,
        unit_cost=unit_cost,
        completed_at=completed_at,
        completed_by=completed_by,
    )
    return PeptideTransition(
        peptide=_replace_vial(peptide, result.vial),
        completions=(result.completion,),
    )


# ==================== ACTIVATION ====================

def activate_vial(
    peptide: Peptide,
    vial_id: str,
    retire_as: Optional[VialCompletionType] = None,
    reason: Optional[str] = None,
    completed_at: Optional[datetime] = None
) -> PeptideTransition:
    """
    RECONSTITUTED -> IN_USE

    Any other current vial of the peptide is completed as `retire_as` in the
    same transition. Without `retire_as`, an existing current vial is an error.
    Retiring as TRANSFERRED moves the remaining doses to the activated vial.
    """
    target = peptide.get_vial(vial_id)
    if target is None:
        raise InvariantViolation(f"Vial {vial_id} does not belong to {peptide.name}", vial_id=vial_id)

    state = vial_state(target)
    if state is VialState.IN_USE:
        return PeptideTransition(peptide=peptide)
    if state is not VialState.RECONSTITUTED:
        raise InvariantViolation(
            f"Vial {vial_id} is {state.value} and cannot be activated", vial_id=vial_id
        )

    others = [v for v in peptide.vials if v.is_current and v.id != vial_id]
    if others and retire_as is None:
        raise InvariantViolation(
            f"{peptide.name} already has current vial {others[0].id}; "
            "say how it should be completed before activating another",
            vial_id=others[0].id,
        )

    completions = []
    for other in others:
        result = complete_vial(
            other,
            retire_as,
            reason=reason,
            transfer_target=target,
            completed_at=completed_at,
        )
        peptide = _replace_vial(peptide, result.vial)
        completions.append(result.completion)

    peptide = _replace_vial(peptide, replace(target, is_current=True, is_active=True))
    logger.debug("Activated vial %s for %s", vial_id, peptide.name)
    return PeptideTransition(peptide=peptide, completions=tuple(completions))


def activate_from_inventory(
    inventory: InventoryRecord,
    peptide: Optional[Peptide] = None,
    reconstitution_date: Optional[datetime] = None,
    bac_water_ml: Optional[float] = None,
    retire_as: Optional[VialCompletionType] = None,
    reason: Optional[str] = None,
    vial_id: Optional[str] = None,
    cost: Optional[float] = None,
    shelf_life_days: int = Config.VIAL_SHELF_LIFE_DAYS,
    default_bac_water_ml: float = Config.DEFAULT_BAC_WATER_ML
) -> PeptideTransition:
    """
    Open a sealed vial from inventory: reconstitute it, make it current and
    move the inventory record to IN_USE with one fewer sealed vial.
    """
    if inventory.num_vials <= 0:
        raise InvariantViolation(f"No sealed vials of {inventory.name} left in inventory")

    if peptide is None:
        peptide = Peptide(
            id=inventory.id,
            name=inventory.name,
            strength=f"{inventory.concentration_per_vial_mcg}mcg/vial",
            typical_dosage_units=inventory.typical_dose_mcg,
        )

    reconstituted_at = reconstitution_date or datetime.now()
    water = bac_water_ml or inventory.bac_water_volume_added or default_bac_water_ml

    sealed = new_vial(
        vial_id=vial_id,
        total_peptide_in_vial_mcg=inventory.concentration_per_vial_mcg,
        cost=cost,
        date_added=reconstituted_at,
    )
    opened = reconstitute(
        sealed,
        bac_water_ml=water,
        typical_dose_mcg=inventory.typical_dose_mcg,
        reconstitution_date=reconstituted_at,
        shelf_life_days=shelf_life_days,
    ).vial
    if opened.initial_amount_units <= 0:
        raise InvalidInput(
            f"{inventory.name} needs a positive concentration and typical dose to open a vial"
        )
    opened = replace(
        opened,
        notes=f"Activated with {water}mL BAC water. "
              f"Stock before activation: {inventory.num_vials} vials.",
    )

    transition = activate_vial(
        replace(peptide, vials=peptide.vials + (opened,)),
        opened.id,
        retire_as=retire_as,
        reason=reason,
        completed_at=reconstituted_at,
    )
    updated_inventory = replace(
        inventory,
        num_vials=inventory.num_vials - 1,
        active_vial_status=ActiveVialStatus.IN_USE,
        active_vial_reconstitution_date=reconstituted_at,
        active_vial_expiry_date=opened.expiration_date,
        bac_water_volume_added=water,
    )
    logger.info(
        "Opened vial %s of %s (%d doses, %d sealed left)",
        opened.id, inventory.name, opened.initial_amount_units, updated_inventory.num_vials,
    )
    return replace(transition, inventory=updated_inventory)


# ==================== DOSING ====================

def log_dose(vial: Vial, dose_log: DoseLog, typical_dose: Optional[float] = None) -> TransitionResult:
    """
    IN_USE -> IN_USE, or IN_USE -> FINISHED when the last unit is used

    remaining_amount_units drops by the log's dose units and never below 0.
    """
    if dose_log.vial_id != vial.id:
        raise InvariantViolation(
            f"Dose log {dose_log.id} belongs to vial {dose_log.vial_id}, not {vial.id}",
            vial_id=vial.id,
        )
    if vial_state(vial) is not VialState.IN_USE:
        raise InvariantViolation(
            f"Cannot log a dose against vial {vial.id}: it is {vial_state(vial).value}",
            vial_id=vial.id,
        )
    units = PeptideCalculator.dose_units(dose_log.dosage, typical_dose)
    if units <= 0:
        raise InvalidInput("Dosage must be greater than 0")

    remaining = max(0, vial.remaining_amount_units - units)
    updated = replace(vial, remaining_amount_units=remaining)
    if remaining > 0:
        return TransitionResult(vial=updated)

    updated = replace(
        updated,
        notes=f"{vial.notes or ''}\nDepleted on {dose_log.date:%Y-%m-%d}".strip(),
    )
    return complete_vial(
        updated,
        VialCompletionType.FULLY_USED,
        completed_at=dose_log.date,
    )


def record_dose(
    peptide: Peptide,
    dosage: float,
    date: Optional[datetime] = None,
    time_of_day: Optional[TimeOfDay] = None,
    unit: Optional[str] = None,
    volume_drawn_ml: Optional[float] = None,
    log_id: Optional[str] = None
) -> PeptideTransition:
    """Log a dose against the peptide's current vial"""
    vial = current_vial(peptide)
    if vial is None:
        raise InvariantViolation(f"{peptide.name} has no current vial to log a dose against")

    dose_log = DoseLog(
        id=log_id or _new_id(),
        vial_id=vial.id,
        dosage=dosage,
        date=date or datetime.now(),
        time_of_day=time_of_day,
        unit=unit or peptide.dosage_unit,
        volume_drawn_ml=volume_drawn_ml,
    )
    if vial.date_added is not None and dose_log.date < vial.date_added:
        raise InvariantViolation(
            f"Dose dated {dose_log.date:%Y-%m-%d} predates vial {vial.id}", vial_id=vial.id
        )

    result = log_dose(vial, dose_log, peptide.typical_dosage_units)
    peptide = replace(
        _replace_vial(peptide, result.vial),
        dose_logs=peptide.dose_logs + (dose_log,),
    )
    completions = (result.completion,) if result.completion else ()
    return PeptideTransition(peptide=peptide, completions=completions, dose_log=dose_log)


def undo_dose_log(peptide: Peptide, log_id: str) -> PeptideTransition:
    """Remove a dose log and give its units back to a still-open vial"""
    dose_log = next((log for log in peptide.dose_logs if log.id == log_id), None)
    if dose_log is None:
        raise InvariantViolation(f"Dose log {log_id} does not exist")

    vial = peptide.get_vial(dose_log.vial_id)
    if vial is not None:
        if is_terminal(vial):
            raise InvariantViolation(
                f"Vial {vial.id} is {vial_state(vial).value}; its dose history is closed",
                vial_id=vial.id,
            )
        units = PeptideCalculator.dose_units(dose_log.dosage, peptide.typical_dosage_units)
        restored = min(vial.initial_amount_units, vial.remaining_amount_units + units)
        peptide = _replace_vial(peptide, replace(vial, remaining_amount_units=restored))

    peptide = replace(
        peptide,
        dose_logs=tuple(log for log in peptide.dose_logs if log.id != log_id),
    )
    return PeptideTransition(peptide=peptide, dose_log=dose_log)


# ==================== STATUS ====================

def vial_status(vial: Vial, now: Optional[datetime] = None) -> VialStatus:
    """Expiry, depletion and usability of a vial"""
    now = now or datetime.now()
    expiration = vial.expiration_date
    is_expired = expiration is not None and expiration < now
    is_empty = vial.remaining_amount_units <= 0
    days_until_expiry = None
    if expiration is not None:
        days_until_expiry = int((expiration - now).total_seconds() // 86400)

    return VialStatus(
        is_expired=is_expired,
        is_empty=is_empty,
        is_current=bool(vial.is_current),
        can_use=bool(vial.is_current) and not is_expired and not is_empty and not is_terminal(vial),
        remaining_doses=vial.remaining_amount_units,
        days_until_expiry=days_until_expiry,
    )


def best_available_vial(vials: Iterable[Vial], now: Optional[datetime] = None) -> Optional[Vial]:
    """The current vial if usable, otherwise the newest open vial that is neither empty nor expired"""
    vials = list(vials)
    for vial in vials:
        if vial.is_current and vial_status(vial, now).can_use:
            return vial

    usable = [
        v for v in vials
        if not is_terminal(v)
        and not vial_status(v, now).is_expired
        and not vial_status(v, now).is_empty
    ]
    usable.sort(key=lambda v: v.date_added or datetime.min, reverse=True)
    return usable[0] if usable else None


def should_prompt_for_new_vial(
    peptide: Peptide,
    inventory: Optional[InventoryRecord] = None,
    now: Optional[datetime] = None,
    low_threshold: int = Config.LOW_DOSE_WARNING
) -> bool:
    vial = current_vial(peptide)
    if vial is None:
        return True

    status = vial_status(vial, now)
    if not status.can_use:
        return True

    return bool(
        status.remaining_doses < low_threshold
        and inventory is not None
        and inventory.num_vials > 0
    )


# ==================== INVENTORY STATUS SYNC ====================

def determine_active_vial_status(peptide: Optional[Peptide]) -> ActiveVialStatus:
    """The coarse active-vial status implied by the detailed vial records"""
    if peptide is None or not peptide.vials:
        return ActiveVialStatus.NONE

    vial = current_vial(peptide)
    if vial is not None:
        if vial.remaining_amount_units > 0:
            return ActiveVialStatus.IN_USE
        return ActiveVialStatus.FINISHED

    completed = [v for v in peptide.vials if v.completion_type is not None]
    if not completed:
        return ActiveVialStatus.NONE
    latest = max(completed, key=lambda v: v.discarded_at or v.date_added or datetime.min)
    if latest.completion_type is VialCompletionType.FULLY_USED:
        return ActiveVialStatus.FINISHED
    return ActiveVialStatus.DISCARDED


def sync_inventory_status(inventory: InventoryRecord, peptide: Optional[Peptide]) -> InventoryRecord:
    """Overwrite the coarse active-vial status from the detailed ledger"""
    status = determine_active_vial_status(peptide)
    if status is inventory.active_vial_status:
        return inventory
    logger.info(
        "Syncing active_vial_status for %s: %s -> %s",
        inventory.name, inventory.active_vial_status.value, status.value,
    )
    return replace(inventory, active_vial_status=status)


def is_low_stock(inventory: InventoryRecord) -> bool:
    if inventory.low_stock_threshold is None:
        return False
    return inventory.num_vials <= inventory.low_stock_threshold
