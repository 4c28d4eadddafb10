from enum import Enum


class AdjustmentType(str, Enum):
    WAIVE_ABSENCE = "waive_absence"
    WAIVE_LATENESS = "waive_lateness"


class DeductionType(str, Enum):
    ABSENCE = "absence"
    LATENESS = "lateness"


class AttendanceStatus(str, Enum):
    PRESENT = "Present"
    ABSENT = "Absent"
    PERMISSION = "Permission"


class PaymentSource(str, Enum):
    STRIPE = "stripe"
    MANUAL = "manual"


class PaymentIntent(str, Enum):
    SUBSCRIPTION = "subscription"
    TUITION = "tuition"
