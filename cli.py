#!/usr/bin/env python3
"""
Peptide Vial Tracker CLI
Command-line interface for inventory, vials and dose logging
"""

from typing import Optional

from calculator import PeptideCalculator, format_dose_display
from config import Config
from database import PeptideDB
from errors import VialError
from models import create_database, get_session
from seed_data import seed_demo_inventory
from vial_lifecycle import vial_state
from vial_types import DataMode, InventoryRecord, VialCompletionType
from wastage import completion_type_display


class PeptideCLI:
    """Command-line interface for vial tracking"""

    def __init__(self, use_sqlite=True):
        """Initialize CLI with database session"""
        self.db_url = Config.get_database_url(use_sqlite=use_sqlite)
        create_database(self.db_url)
        self.session = get_session(self.db_url)
        self.db = PeptideDB(self.session)

    def run(self):
        """Main CLI loop"""
        print("\n" + "="*60)
        print("PEPTIDE VIAL TRACKER CLI")
        print("="*60)

        actions = {
            "1": self.list_inventory,
            "2": self.view_vials,
            "3": self.calculate_reconstitution,
            "4": self.activate_vial,
            "5": self.log_dose,
            "6": self.complete_vial,
            "7": self.wastage_report,
            "8": self.seed,
        }

        while True:
            print("\nMAIN MENU:")
            print("1. List inventory")
            print("2. View vials for a peptide")
            print("3. Calculate reconstitution")
            print("4. Open a new vial")
            print("5. Log dose")
            print("6. Complete vial")
            print("7. Wastage report")
            print("8. Seed demo inventory")
            print("9. Exit")

            choice = input("\nSelect option (1-9): ").strip()

            if choice == "9":
                print("\nGoodbye!")
                break
            action = actions.get(choice)
            if action is None:
                print("Invalid option. Please try again.")
                continue
            try:
                action()
            except VialError as e:
                print(f"\n⚠ {e}")
            except ValueError as e:
                print(f"\n⚠ Error: {e}")

    def _pick_inventory(self) -> Optional[InventoryRecord]:
        name = input("\nPeptide name: ").strip()
        record = self.db.get_inventory_by_name(name)
        if not record:
            print(f"\n⚠ Peptide '{name}' not found.")
        return record

    def list_inventory(self):
        """List inventory with dose counts"""
        records = self.db.list_inventory()
        if not records:
            print("\n⚠ Inventory is empty. Choose option 8 to add demo peptides.")
            return

        print("\n" + "="*60)
        print("INVENTORY")
        print("="*60)

        for record in records:
            summary = self.db.dose_summary(record.id)
            display = format_dose_display(summary.remaining)
            source = "ledger" if summary.remaining_mode is DataMode.DETAILED else "estimated"
            print(f"\n{record.name}")
            print(f"  Sealed vials: {record.num_vials}  Active vial: {record.active_vial_status.value}")
            print(f"  Doses: {display.text} of {summary.total} ({source})")
            if summary.used_mode is DataMode.DETAILED:
                print(f"  Used from last vial: {summary.used} (ledger)")
            else:
                print("  Used: unknown, no dose log")
            if display.is_low_stock:
                print("  ⚠ Low on doses")

    def view_vials(self):
        """Show every vial tracked for a peptide"""
        record = self._pick_inventory()
        if not record:
            return
        peptide = self.db.get_peptide(record.id)
        if not peptide or not peptide.vials:
            print("\n⚠ No vials opened yet.")
            return

        print("\n" + "="*60)
        print(f"VIALS: {peptide.name}")
        print("="*60)
        for i, vial in enumerate(peptide.vials, 1):
            print(f"{i}. {vial.id[:8]}  {vial_state(vial).value}  "
                  f"{vial.remaining_amount_units}/{vial.initial_amount_units} doses")
            if vial.expiration_date:
                print(f"   Expires: {vial.expiration_date.strftime('%Y-%m-%d')}")

    def calculate_reconstitution(self):
        """Interactive reconstitution calculator"""
        print("\n" + "="*60)
        print("RECONSTITUTION CALCULATOR")
        print("="*60)

        peptide_name = input("\nPeptide name: ").strip()
        mg_amount = float(input("Vial size (mg): "))
        ml_water = float(input("Bacteriostatic water to add (ml): "))
        dose_mcg = float(input("Desired dose per injection (mcg): "))
        doses_per_day = int(input("Doses per day: "))

        report = PeptideCalculator.full_reconstitution_report(
            peptide_name, mg_amount, ml_water, dose_mcg, doses_per_day
        )
        PeptideCalculator.print_reconstitution_report(report)

    def _ask_completion_type(self, prompt: str) -> VialCompletionType:
        types = list(VialCompletionType)
        for i, completion_type in enumerate(types, 1):
            print(f"{i}. {completion_type_display(completion_type)}")
        index = int(input(prompt)) - 1
        if not 0 <= index < len(types):
            raise ValueError("No such option")
        return types[index]

    def activate_vial(self):
        """Open a sealed vial from inventory"""
        record = self._pick_inventory()
        if not record:
            return

        water = input(f"BAC water added (ml, default {Config.DEFAULT_BAC_WATER_ML}): ").strip()
        retire_as = None
        peptide = self.db.get_peptide(record.id)
        if peptide and any(v.is_current for v in peptide.vials):
            print("\nThe current vial must be completed first:")
            retire_as = self._ask_completion_type("How should it be completed? ")

        transition = self.db.activate_vial_from_inventory(
            record.id,
            bac_water_ml=float(water) if water else None,
            retire_as=retire_as,
        )
        opened = transition.peptide.vials[-1]
        print(f"\n✓ Vial opened with {opened.initial_amount_units} doses")
        print(f"  Sealed vials left: {transition.inventory.num_vials}")
        for completion in transition.completions:
            print(f"  Previous vial: {completion_type_display(completion.type)}, "
                  f"{completion.wasted_doses} doses wasted")

    def log_dose(self):
        """Log a dose against the current vial"""
        record = self._pick_inventory()
        if not record:
            return

        default = record.typical_dose_mcg or ""
        dosage = input(f"Dose (mcg, default {default}): ").strip()
        transition = self.db.log_dose(record.id, float(dosage) if dosage else record.typical_dose_mcg)

        summary = self.db.dose_summary(record.id)
        print(f"\n✓ Dose logged. {format_dose_display(summary.remaining).text}")
        if transition.completion:
            print("  Vial finished. Open a new vial before the next dose.")

    def complete_vial(self):
        """Take the current vial out of service"""
        record = self._pick_inventory()
        if not record:
            return
        peptide = self.db.get_peptide(record.id)
        vial = next((v for v in peptide.vials if v.is_current), None) if peptide else None
        if not vial:
            print("\n⚠ No current vial.")
            return

        print(f"\nCurrent vial has {vial.remaining_amount_units} doses remaining.")
        completion_type = self._ask_completion_type("Reason for completion: ")
        reason = input("Details (optional): ").strip() or None
        transfer_to = None
        if completion_type is VialCompletionType.TRANSFERRED:
            transfer_to = input("Transfer to vial id: ").strip()

        transition = self.db.complete_vial(
            record.id, vial.id, completion_type, reason=reason, transferred_to_vial_id=transfer_to
        )
        completion = transition.completion
        print(f"\n✓ Vial completed ({completion_type_display(completion.type)})")
        print(f"  Doses wasted: {completion.wasted_doses}")

    def wastage_report(self):
        """Show wastage across all completed vials"""
        stats = self.db.wastage_stats()

        print("\n" + "="*60)
        print("WASTAGE REPORT")
        print("="*60)
        print(f"Vials completed: {stats.total_vials}")
        print(f"Doses used: {stats.total_doses_used}")
        print(f"Doses wasted: {stats.total_doses_wasted} ({stats.wastage_percentage:.1f}%)")
        print(f"Cost wasted: ${stats.total_cost_wasted:.2f}")
        print(f"Average vial utilization: {stats.average_vial_utilization * 100:.1f}%")
        for completion_type, bucket in stats.waste_by_reason.items():
            print(f"  {completion_type_display(completion_type)}: {bucket.count} vials, "
                  f"{bucket.doses_wasted} doses wasted")

    def seed(self):
        added = seed_demo_inventory(self.db)
        print(f"\n✓ Added {len(added)} demo peptides")

    def close(self):
        """Close database session"""
        self.session.close()


def main():
    """Run CLI application"""
    cli = PeptideCLI(use_sqlite=True)

    try:
        cli.run()
    except KeyboardInterrupt:
        print("\n\nInterrupted by user. Exiting...")
    finally:
        cli.close()


if __name__ == "__main__":
    main()
