# enrollhub/schemas/enums.py - Fixed vocabularies shared by import and reporting
from enum import Enum


class StudentStatus(str, Enum):
    ATTENDED_ONLINE = "Attended Online"
    ATTEND_SESSIONS = "Attend sessions"
    ATTENDED_F2F = "Attended F2F"
    EXAM_CYCLE = "Exam cycle"
    AWAITING_RESULTS = "Awaiting results"
    PASS = "Pass"
    FAIL = "Fail"


class PaymentStage(str, Enum):
    ADVANCE = "Advance"
    SECOND = "Second"
    THIRD = "Third"
    FINAL = "Final"
    OTHER = "Other"


class PaymentMode(str, Enum):
    CREDIT_CARD = "Credit Card"
    BANK_TRANSFER = "Bank Transfer"
    CASH = "Cash"
    CHEQUE = "Cheque"
    ONLINE_PAYMENT = "Online Payment"


STATUS_OPTIONS = [s.value for s in StudentStatus]
PAYMENT_MODES = [m.value for m in PaymentMode]

# Stages carried as column groups on an import row, in template order
ROW_STAGES = (PaymentStage.ADVANCE, PaymentStage.SECOND, PaymentStage.THIRD, PaymentStage.FINAL)

# Column layout of the import template (owned by the spreadsheet codec)
TEMPLATE_COLUMNS = [
    "full_name", "email", "phone", "address", "country", "passport_id",
    "course_title", "batch_id", "join_date", "class_start_date", "status",
    "referred_by_name", "referral_payment_amount", "total_course_fee",
    "advance_payment_amount", "advance_payment_mode", "advance_payment_date",
    "second_payment_amount", "second_payment_mode", "second_payment_date",
    "third_payment_amount", "third_payment_mode", "third_payment_date",
    "final_payment_amount", "final_payment_mode", "final_payment_date",
    "notes",
]
