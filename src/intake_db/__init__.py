"""intake_db — PostgreSQL persistence for versioned insurance intakes.

Provides the ORM model, async engine wrapper and repository used by
``intake_rulesets.intake.IntakeService`` to store validated intake
documents as append-only versions per case.
"""

from intake_db.config import DatabaseSettings, database_configured
from intake_db.engine import IntakeDatabase
from intake_db.models.intake import InsuranceIntake
from intake_db.repository import IntakeRepository

__all__ = [
    "DatabaseSettings",
    "InsuranceIntake",
    "IntakeDatabase",
    "IntakeRepository",
    "database_configured",
]
