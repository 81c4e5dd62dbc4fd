"""
Seed Database with Demo Inventory
Populate inventory with a few common peptides and sealed vials
"""

from typing import List

from config import Config
from database import PeptideDB
from models import create_database, get_session
from vial_types import InventoryRecord, PeptideSchedule, TimeOfDay

DEMO_INVENTORY = [
    {
        "name": "BPC-157",
        "num_vials": 3,
        "concentration_per_vial_mcg": 5000,
        "typical_dose_mcg": 250,
        "storage_location": "Refrigerator",
        "schedule": PeptideSchedule(frequency="daily", times=(TimeOfDay.AM, TimeOfDay.PM)),
        "notes": "Healing protocol, split AM/PM",
    },
    {
        "name": "TB-500",
        "num_vials": 2,
        "concentration_per_vial_mcg": 5000,
        "typical_dose_mcg": 2500,
        "storage_location": "Refrigerator",
        "schedule": PeptideSchedule(frequency="weekly", days_of_week=(1, 4)),
    },
    {
        "name": "Ipamorelin",
        "num_vials": 4,
        "concentration_per_vial_mcg": 2000,
        "typical_dose_mcg": 200,
        "low_stock_threshold": 5,
        "storage_location": "Freezer",
        "schedule": PeptideSchedule(frequency="daily", times=(TimeOfDay.PM,)),
    },
]


def seed_demo_inventory(db: PeptideDB) -> List[InventoryRecord]:
    """Add demo peptides that are not in inventory yet"""
    added = []
    for data in DEMO_INVENTORY:
        if db.get_inventory_by_name(data["name"]):
            print(f"• Skipped: {data['name']} (already in inventory)")
            continue
        record = db.add_inventory_peptide(**data)
        print(f"✓ Added: {record.name} ({record.num_vials} vials)")
        added.append(record)
    return added


def main():
    """Run seeding script"""
    db_url = Config.get_database_url(use_sqlite=True)
    print(f"Using database: {db_url}")

    create_database(db_url)

    session = get_session(db_url)
    try:
        print("\n" + "="*60)
        print("SEEDING DEMO INVENTORY")
        print("="*60 + "\n")
        added = seed_demo_inventory(PeptideDB(session))
        print(f"\nSeeded {len(added)} peptides")
    finally:
        session.close()


if __name__ == "__main__":
    main()
