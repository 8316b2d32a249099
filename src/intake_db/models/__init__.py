"""ORM models for intake_db."""

from intake_db.models.base import Base
from intake_db.models.intake import InsuranceIntake

__all__ = ["Base", "InsuranceIntake"]
