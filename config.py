"""
Configuration for Peptide Vial Tracker
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration"""

    # Database configuration - use DATABASE_URL from environment if available
    DATABASE_URL = os.getenv("DATABASE_URL")

    # If no DATABASE_URL is set, fall back to SQLite for local development
    if not DATABASE_URL:
        DATABASE_URL = "sqlite:///peptide_tracker.db"

    # Vial accounting defaults
    VIAL_SHELF_LIFE_DAYS = int(os.getenv("VIAL_SHELF_LIFE_DAYS", "35"))  # after reconstitution
    DEFAULT_BAC_WATER_ML = float(os.getenv("DEFAULT_BAC_WATER_ML", "2"))
    LOW_DOSE_WARNING = int(os.getenv("LOW_DOSE_WARNING", "3"))

    # Application settings
    DEBUG = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")

    @classmethod
    def get_database_url(cls, use_sqlite: bool = False) -> str:
        """Get database URL, optionally forcing SQLite"""
        if use_sqlite:
            return "sqlite:///peptide_tracker.db"
        return cls.DATABASE_URL

    @classmethod
    def print_config(cls):
        """Print current configuration (hiding sensitive data)"""
        print("\n" + "="*60)
        print("PEPTIDE VIAL TRACKER CONFIGURATION")
        print("="*60)
        print(f"Database: {cls.DATABASE_URL.split('@')[-1]}")
        print(f"Vial shelf life: {cls.VIAL_SHELF_LIFE_DAYS} days after reconstitution")
        print(f"Default BAC water: {cls.DEFAULT_BAC_WATER_ML} ml")
        print(f"Low dose warning: below {cls.LOW_DOSE_WARNING} doses")
        print(f"Log level: {cls.LOG_LEVEL}")
        print(f"Debug mode: {cls.DEBUG}")
        print("="*60 + "\n")


if __name__ == "__main__":
    Config.print_config()
