"""
Peptide Dose Calculator
Dose arithmetic for vials: capacity, used and remaining doses, draw volumes

Remaining/used doses can come from two records for the same vial:
- the detailed ledger (Peptide.vials + Peptide.dose_logs), exact
- the coarse inventory record, which only knows concentration and typical dose

The detailed ledger always wins. The coarse record is a fallback that cannot
know how many doses were taken, so it reports 0 used doses. Every figure can be
requested together with the DataMode that produced it.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from config import Config
from errors import InvalidInput
from vial_types import (
    DataMode, DoseDisplay, DoseSummary, InventoryRecord, Peptide, Vial
)

logger = logging.getLogger(__name__)


def _positive_number(value: Any) -> Optional[float]:
    """Return value as a finite positive float, or None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


class PeptideCalculator:
    """Calculate vial capacity, reconstitution and dosing"""

    @staticmethod
    def total_doses_per_vial(concentration_per_vial_mcg: Any, typical_dose_mcg: Any) -> int:
        """
        Capacity of a freshly reconstituted vial

        Args:
            concentration_per_vial_mcg: Total peptide in the vial (mcg)
            typical_dose_mcg: Dose per injection (mcg)

        Returns:
            floor(concentration / dose), or 0 when either value is missing,
            non-numeric or non-positive
        """
        concentration = _positive_number(concentration_per_vial_mcg)
        dose = _positive_number(typical_dose_mcg)
        if concentration is None or dose is None:
            return 0
        return int(math.floor(concentration / dose))

    @staticmethod
    def dose_units(dosage: Any, typical_dose: Any = None) -> int:
        """
        Number of vial units consumed by one logged dose

        A 600mcg log against a 300mcg typical dose consumes 2 units. Without a
        typical dose every log counts as a single unit.
        """
        amount = _positive_number(dosage)
        if amount is None:
            return 0
        typical = _positive_number(typical_dose)
        if typical is None:
            return 1
        # round first so 1.1 / 0.1 does not ceil to 12
        return int(math.ceil(round(amount / typical, 9)))

    @staticmethod
    def percentage_remaining(remaining: int, total: int) -> float:
        """100 * remaining / total, 0 when total is 0. Not clamped."""
        if not total:
            return 0.0
        return 100.0 * remaining / total

    @staticmethod
    def clamp_percentage(percentage: float) -> float:
        """Clamp a percentage into [0, 100] for display"""
        return max(0.0, min(100.0, percentage))

    @staticmethod
    def calculate_concentration(mg_peptide: float, ml_water: float) -> float:
        """
        Calculate concentration after reconstitution

        Returns:
            Concentration in mcg/ml
        """
        if _positive_number(ml_water) is None:
            raise InvalidInput("Water volume must be greater than 0")
        if _positive_number(mg_peptide) is None:
            raise InvalidInput("Peptide amount must be greater than 0")

        # 1 mg = 1000 mcg
        return round(mg_peptide * 1000 / ml_water, 2)

    @staticmethod
    def calculate_dose_volume(desired_dose_mcg: float, concentration_mcg_per_ml: float) -> float:
        """Volume in ml needed for the desired dose"""
        if _positive_number(concentration_mcg_per_ml) is None:
            raise InvalidInput("Concentration must be greater than 0")
        return round(desired_dose_mcg / concentration_mcg_per_ml, 3)

    @staticmethod
    def calculate_units_on_syringe(volume_ml: float) -> float:
        """Convert ml to insulin syringe units (100 units = 1 ml)"""
        return round(volume_ml * 100, 1)

    @staticmethod
    def calculate_draw_volume(
        dose_mcg: Any,
        total_mcg_in_vial: Any,
        bac_water_ml: Any
    ) -> int:
        """
        Insulin units to draw for a dose from a reconstituted vial

        Args:
            dose_mcg: Dose in micrograms
            total_mcg_in_vial: Total peptide in the vial (mcg)
            bac_water_ml: BAC water used for reconstitution

        Returns:
            Whole insulin units (rounded half up), 0 when the vial data is incomplete
        """
        dose = _positive_number(dose_mcg)
        total = _positive_number(total_mcg_in_vial)
        water = _positive_number(bac_water_ml)
        if dose is None or total is None or water is None:
            return 0
        volume_ml = dose / (total / water)
        return int(math.floor(volume_ml * 100 + 0.5))

    @staticmethod
    def calculate_vial_duration(total_doses: int, doses_per_day: int) -> float:
        """Days a vial will last at the given daily frequency"""
        if doses_per_day <= 0:
            raise InvalidInput("Doses per day must be greater than 0")
        return round(total_doses / doses_per_day, 1)

    @staticmethod
    def full_reconstitution_report(
        peptide_name: str,
        mg_peptide: float,
        ml_water: float,
        desired_dose_mcg: float,
        doses_per_day: int = 1
    ) -> Dict[str, Any]:
        """Generate a complete reconstitution and dosing report"""
        calc = PeptideCalculator

        concentration = calc.calculate_concentration(mg_peptide, ml_water)
        dose_volume = calc.calculate_dose_volume(desired_dose_mcg, concentration)
        total_doses = calc.total_doses_per_vial(mg_peptide * 1000, desired_dose_mcg)

        return {
            "peptide": peptide_name,
            "vial_size_mg": mg_peptide,
            "water_added_ml": ml_water,
            "concentration_mcg_per_ml": concentration,
            "target_dose_mcg": desired_dose_mcg,
            "dose_volume_ml": dose_volume,
            "syringe_units": calc.calculate_units_on_syringe(dose_volume),
            "total_doses_in_vial": total_doses,
            "doses_per_day": doses_per_day,
            "vial_lasts_days": calc.calculate_vial_duration(total_doses, doses_per_day),
        }

    @staticmethod
    def print_reconstitution_report(report: Dict[str, Any]) -> None:
        """Print a formatted reconstitution report"""
        print(f"\n{'='*60}")
        print(f"PEPTIDE RECONSTITUTION REPORT: {report['peptide']}")
        print(f"{'='*60}")
        print(f"\nVIAL PREPARATION:")
        print(f"  • Peptide amount: {report['vial_size_mg']} mg")
        print(f"  • Bacteriostatic water: {report['water_added_ml']} ml")
        print(f"  • Final concentration: {report['concentration_mcg_per_ml']} mcg/ml")
        print(f"\nDOSING INSTRUCTIONS:")
        print(f"  • Target dose: {report['target_dose_mcg']} mcg")
        print(f"  • Inject volume: {report['dose_volume_ml']} ml")
        print(f"  • Syringe units: {report['syringe_units']} units (on insulin syringe)")
        print(f"  • Frequency: {report['doses_per_day']}x per day")
        print(f"\nVIAL LIFESPAN:")
        print(f"  • Total doses available: {report['total_doses_in_vial']}")
        print(f"  • Vial will last: {report['vial_lasts_days']} days")
        print(f"{'='*60}\n")


# ==================== LEDGER / INVENTORY RECONCILIATION ====================

def current_vial(peptide: Optional[Peptide]) -> Optional[Vial]:
    """The vial marked current for new dose logs, if any"""
    if peptide is None:
        return None
    for vial in peptide.vials:
        if vial.is_current:
            return vial
    return None


def ledger_vial(peptide: Optional[Peptide]) -> Optional[Vial]:
    """Current vial, or the most recently added one when none is current"""
    vial = current_vial(peptide)
    if vial is not None or peptide is None or not peptide.vials:
        return vial
    # vials without a date sort oldest; ties keep list order
    _, latest = max(
        enumerate(peptide.vials),
        key=lambda item: (
            item[1].date_added is not None,
            item[1].date_added or datetime.min,
            item[0],
        ),
    )
    return latest


def units_logged(peptide: Peptide, vial_id: str) -> int:
    """Sum of dose units logged against one vial"""
    return sum(
        PeptideCalculator.dose_units(log.dosage, peptide.typical_dosage_units)
        for log in peptide.dose_logs
        if log.vial_id == vial_id
    )


def coarse_total_doses(inventory: Optional[InventoryRecord]) -> int:
    if inventory is None:
        return 0
    return PeptideCalculator.total_doses_per_vial(
        inventory.concentration_per_vial_mcg, inventory.typical_dose_mcg
    )


def used_doses_with_mode(
    peptide: Optional[Peptide],
    inventory: Optional[InventoryRecord] = None
) -> Tuple[int, DataMode]:
    vial = ledger_vial(peptide)
    if vial is None:
        logger.debug("No dose ledger for %s; reporting 0 used doses",
                     inventory.name if inventory else "unknown peptide")
        return 0, DataMode.COARSE
    return units_logged(peptide, vial.id), DataMode.DETAILED


def remaining_doses_with_mode(
    peptide: Optional[Peptide],
    inventory: Optional[InventoryRecord] = None
) -> Tuple[int, DataMode]:
    vial = current_vial(peptide)
    if vial is not None:
        return vial.remaining_amount_units, DataMode.DETAILED
    used, _ = used_doses_with_mode(peptide, inventory)
    return max(0, coarse_total_doses(inventory) - used), DataMode.COARSE


def total_doses_per_vial(concentration_per_vial_mcg: Any, typical_dose_mcg: Any) -> int:
    return PeptideCalculator.total_doses_per_vial(concentration_per_vial_mcg, typical_dose_mcg)


def used_doses(peptide: Optional[Peptide], inventory: Optional[InventoryRecord] = None) -> int:
    """Doses used from the current vial; 0 when only coarse data exists"""
    return used_doses_with_mode(peptide, inventory)[0]


def remaining_doses(peptide: Optional[Peptide], inventory: Optional[InventoryRecord] = None) -> int:
    """Doses left in the current vial, or the coarse vial capacity as a fallback"""
    return remaining_doses_with_mode(peptide, inventory)[0]


def dose_summary(peptide: Optional[Peptide], inventory: Optional[InventoryRecord] = None) -> DoseSummary:
    """Total/used/remaining doses for display, tagged with the mode that produced them"""
    vial = current_vial(peptide)
    used, used_mode = used_doses_with_mode(peptide, inventory)
    remaining, remaining_mode = remaining_doses_with_mode(peptide, inventory)
    total = vial.initial_amount_units if vial is not None else coarse_total_doses(inventory)
    return DoseSummary(
        total=total,
        used=used,
        remaining=remaining,
        used_mode=used_mode,
        remaining_mode=remaining_mode,
        percentage_remaining=PeptideCalculator.percentage_remaining(remaining, total),
    )


def format_dose_display(remaining: int, low_threshold: int = Config.LOW_DOSE_WARNING) -> DoseDisplay:
    """Human-readable remaining-dose text with a low stock flag"""
    if remaining <= 0:
        return DoseDisplay("No doses remaining", True)
    if remaining == 1:
        return DoseDisplay("1 dose left", True)
    return DoseDisplay(f"{remaining} doses left", remaining < low_threshold)

