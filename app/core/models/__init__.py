from app.auth.models import FieldPermission, Profile, RolePermission, UserRole
from app.core.models.audit_log import AuditLog
from app.core.models.enrollment import (
    EnrollmentApplication,
    EnrollmentDocument,
    EnrollmentOverride,
    EnrollmentType,
    EnrollmentWorkflow,
    EnrollmentWorkflowStep,
)
from app.core.models.finance import (
    CollectionSession,
    InstallmentPlan,
    InstallmentSchedule,
    OutstandingFee,
    PaymentRecord,
)
from app.core.models.library import (
    LibraryBookCopy,
    LibraryBookTitle,
    LibraryCirculation,
    LibraryFine,
    LibraryMember,
    LibrarySettings,
)
from app.core.models.recruitment import JobApplication
from app.core.models.safeguarding import SafeguardingConcern
from app.core.models.tenant import Module, School, SchoolModule
from app.core.models.transport import StudentTripLog, TransportAlert, TripEvent, TripInstance

__all__ = [
    "AuditLog",
    "CollectionSession",
    "EnrollmentApplication",
    "EnrollmentDocument",
    "EnrollmentOverride",
    "EnrollmentType",
    "EnrollmentWorkflow",
    "EnrollmentWorkflowStep",
    "FieldPermission",
    "InstallmentPlan",
    "InstallmentSchedule",
    "JobApplication",
    "LibraryBookCopy",
    "LibraryBookTitle",
    "LibraryCirculation",
    "LibraryFine",
    "LibraryMember",
    "LibrarySettings",
    "Module",
    "OutstandingFee",
    "PaymentRecord",
    "Profile",
    "RolePermission",
    "SafeguardingConcern",
    "School",
    "SchoolModule",
    "StudentTripLog",
    "TransportAlert",
    "TripEvent",
    "TripInstance",
    "UserRole",
]
