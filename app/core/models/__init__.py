from app.core.models.school import School
from app.core.models.teacher import Teacher
from app.core.models.student import Student
from app.core.models.teacher_assignment import TeacherAssignment
from app.core.models.teacher_change_event import TeacherChangeEvent
from app.core.models.session_link import SessionLink
from app.core.models.attendance_record import AttendanceRecord
from app.core.models.absence_record import AbsenceRecord
from app.core.models.deduction_waiver import DeductionWaiver
from app.core.models.deduction_config import LatenessDeductionTier, PackageDeductionRate, SchoolSetting
from app.core.models.audit_log import AuditLog
from app.core.models.subscription_package import SubscriptionPackage
from app.core.models.student_subscription import StudentSubscription
from app.core.models.payment import Payment

__all__ = [
    "School",
    "Teacher",
    "Student",
    "TeacherAssignment",
    "TeacherChangeEvent",
    "SessionLink",
    "AttendanceRecord",
    "AbsenceRecord",
    "DeductionWaiver",
    "PackageDeductionRate",
    "LatenessDeductionTier",
    "SchoolSetting",
    "AuditLog",
    "SubscriptionPackage",
    "StudentSubscription",
    "Payment",
]
