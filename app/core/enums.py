"""
Closed enumerations. Literal values are the stored/wire contract and must not change:
historical records and external reports depend on them.
"""

from enum import Enum


class AppRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    SCHOOL_ADMIN = "school_admin"
    TEACHER = "teacher"
    FORM_TUTOR = "form_tutor"
    DSL = "dsl"
    NURSE = "nurse"
    HOD = "hod"
    PARENT = "parent"
    STUDENT = "student"
    TA = "ta"


ADMIN_ROLES = frozenset({AppRole.SUPER_ADMIN.value, AppRole.SCHOOL_ADMIN.value})


class ResourceType(str, Enum):
    STUDENTS = "students"
    GRADES = "grades"
    ATTENDANCE = "attendance"
    MEDICAL_RECORDS = "medical_records"
    SAFEGUARDING_LOGS = "safeguarding_logs"
    FINANCIAL_DATA = "financial_data"
    REPORTS = "reports"
    STAFF_MANAGEMENT = "staff_management"
    SYSTEM_SETTINGS = "system_settings"
    COMMUNICATIONS = "communications"
    TIMETABLES = "timetables"
    ADMISSIONS = "admissions"


# Denied access to these answers "not found" so record existence does not leak
SENSITIVE_RESOURCES = frozenset({ResourceType.MEDICAL_RECORDS, ResourceType.SAFEGUARDING_LOGS})


class PermissionType(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    APPROVE = "approve"
    ESCALATE = "escalate"


class EnrollmentStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    DOCUMENTS_PENDING = "documents_pending"
    ASSESSMENT_SCHEDULED = "assessment_scheduled"
    ASSESSMENT_COMPLETE = "assessment_complete"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_COMPLETE = "interview_complete"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    OFFER_SENT = "offer_sent"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_DECLINED = "offer_declined"
    ENROLLED = "enrolled"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    ON_HOLD = "on_hold"
    REQUIRES_OVERRIDE = "requires_override"


class EnrollmentPathway(str, Enum):
    STANDARD_DIGITAL = "standard_digital"
    SIBLING_AUTOMATIC = "sibling_automatic"
    INTERNAL_PROGRESSION = "internal_progression"
    STAFF_CHILD = "staff_child"
    PARTNER_SCHOOL = "partner_school"
    EMERGENCY_SAFEGUARDING = "emergency_safeguarding"


class OverrideReason(str, Enum):
    POLICY_EXCEPTION = "policy_exception"
    EMERGENCY_CIRCUMSTANCES = "emergency_circumstances"
    SAFEGUARDING_PRIORITY = "safeguarding_priority"
    STAFF_DISCRETION = "staff_discretion"
    TECHNICAL_ISSUE = "technical_issue"
    DATA_CORRECTION = "data_correction"


class LibraryBookStatus(str, Enum):
    AVAILABLE = "available"
    ISSUED = "issued"
    RESERVED = "reserved"
    LOST = "lost"
    WITHDRAWN = "withdrawn"
    REPAIR = "repair"
    PROCESSING = "processing"


class LibraryMemberType(str, Enum):
    STUDENT = "student"
    STAFF = "staff"


class CirculationStatus(str, Enum):
    ISSUED = "issued"
    RETURNED = "returned"
    LOST = "lost"


class LibraryFineStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"
    PARTIALLY_PAID = "partially_paid"


class TripStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    DELAYED = "delayed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TripAction(str, Enum):
    BOARD = "board"
    ALIGHT = "alight"
    NO_SHOW = "no_show"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecruitmentStatus(str, Enum):
    SUBMITTED = "submitted"
    SCREENING = "screening"
    INTERVIEW = "interview"
    ASSESSMENT = "assessment"
    OFFER = "offer"
    HIRED = "hired"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class RecordStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    ESCALATED = "escalated"


class SafeguardingConcernType(str, Enum):
    PHYSICAL_ABUSE = "physical_abuse"
    EMOTIONAL_ABUSE = "emotional_abuse"
    SEXUAL_ABUSE = "sexual_abuse"
    NEGLECT = "neglect"
    BULLYING = "bullying"
    SELF_HARM = "self_harm"
    DOMESTIC_VIOLENCE = "domestic_violence"
    ONLINE_SAFETY = "online_safety"
    RADICALISATION = "radicalisation"
    OTHER = "other"


class SafeguardingRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CollectionSessionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    RECONCILED = "reconciled"
    APPROVED = "approved"


class FeeStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"
    REFUNDED = "refunded"


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    WAIVED = "waived"


class InstallmentPlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
