from sitescout.models.base import Base, ULIDMixin
from sitescout.models.session import InspectionSessionRecord
from sitescout.models.finding import FindingRecord

__all__ = ["Base", "ULIDMixin", "InspectionSessionRecord", "FindingRecord"]
