import json
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

PaymentType = Literal["ONE_TIME", "EMI"]
PaymentMode = Literal["Cash", "Online", "PhonePe", "Google Pay", "Razorpay", "Other"]
Gender = Literal["Male", "Female", "Other"]
AdmissionStatus = Literal["Active", "Inactive", "Completed", "Cancelled"]
CourseCategory = Literal[
    "Accounting",
    "Designing",
    "10+2/ College Students",
    "IT For Beginners",
    "Diploma",
    "Global IT Certifications",
]
CourseLevel = Literal["Beginner", "Intermediate", "Advanced"]
CourseStatus = Literal["Active", "Featured", "Upcoming"]

MOBILE_PATTERN = r"^[0-9]{10}$"
PINCODE_PATTERN = r"^[0-9]{6}$"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


def _parse_json_section(value):
    # multipart submissions carry nested sections as JSON-encoded strings
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            raise ValueError("must be a JSON object")
    return value


# ---------------------------------------------------------------- users

class UserBrief(CamelModel):
    id: int
    first_name: str
    last_name: str = ""
    email: str
    mobile: Optional[str] = None


# ---------------------------------------------------------------- branches

class BranchAddress(CamelModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    pincode: str = Field(min_length=1)


class BranchContact(CamelModel):
    phone: str = Field(min_length=1)
    email: EmailStr


class BranchCreate(CamelModel):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)
    address: BranchAddress
    contact: BranchContact
    head_of_branch_id: Optional[int] = Field(default=None, alias="headOfBranch")
    establishment_date: Optional[date] = None
    facilities: List[str] = []

    @field_validator("code")
    @classmethod
    def upper_code(cls, v):
        return v.upper()


class BranchAddressPatch(CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class BranchContactPatch(CamelModel):
    phone: Optional[str] = None
    email: Optional[EmailStr] = None


class BranchUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    code: Optional[str] = Field(default=None, min_length=1)
    address: Optional[BranchAddressPatch] = None
    contact: Optional[BranchContactPatch] = None
    head_of_branch_id: Optional[int] = Field(default=None, alias="headOfBranch")
    establishment_date: Optional[date] = None
    facilities: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v):
        return v.upper() if v else v


class BranchBrief(CamelModel):
    id: int
    name: str
    code: str
    address: Dict[str, Any]
    contact: Dict[str, Any]


class BranchOut(BranchBrief):
    head_of_branch_id: Optional[int] = Field(default=None, serialization_alias="headOfBranch")
    establishment_date: Optional[date] = None
    facilities: List[str] = []
    total_students: int = 0
    total_staff: int = 0
    is_active: bool
    created_at: Optional[datetime] = None


class BranchEnvelope(CamelModel):
    message: str
    branch: BranchOut


# ---------------------------------------------------------------- courses

class CourseCreate(CamelModel):
    title: str = Field(min_length=1)
    code: str = Field(min_length=1)
    category: CourseCategory
    description: str = Field(min_length=1)
    short_description: str = Field(min_length=1)
    level: CourseLevel = "Beginner"
    status: CourseStatus = "Active"
    duration: int = Field(gt=0)
    fees: float = Field(ge=0)
    branch_ids: List[int] = Field(default=[], alias="branches")
    max_students: int = Field(default=30, gt=0)

    @field_validator("code")
    @classmethod
    def upper_code(cls, v):
        return v.upper()


class CourseUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1)
    code: Optional[str] = Field(default=None, min_length=1)
    category: Optional[CourseCategory] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    level: Optional[CourseLevel] = None
    status: Optional[CourseStatus] = None
    duration: Optional[int] = Field(default=None, gt=0)
    fees: Optional[float] = Field(default=None, ge=0)
    branch_ids: Optional[List[int]] = Field(default=None, alias="branches")
    max_students: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v):
        return v.upper() if v else v


class CourseBrief(CamelModel):
    id: int
    title: str
    code: str
    fees: float
    duration: int


class CourseOut(CourseBrief):
    category: str
    description: str
    short_description: str
    level: str
    status: str
    max_students: int
    current_enrollments: int
    is_active: bool
    branches: List[BranchBrief] = []
    created_at: Optional[datetime] = None


class CourseEnvelope(CamelModel):
    message: str
    course: CourseOut


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class CoursePage(CamelModel):
    courses: List[CourseOut]
    pagination: Pagination


# ---------------------------------------------------------------- admissions

class PersonalDetailsIn(CamelModel):
    full_name: str = Field(min_length=1, max_length=100)
    mobile_number: str = Field(pattern=MOBILE_PATTERN)
    email_id: Optional[EmailStr] = None
    date_of_birth: date
    gender: Gender

    @field_validator("email_id", mode="before")
    @classmethod
    def blank_email(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v


class AddressIn(CamelModel):
    address_line1: str = Field(min_length=1, max_length=200)
    address_line2: Optional[str] = Field(default=None, max_length=200)
    landmark: Optional[str] = Field(default=None, max_length=100)
    city: str = Field(min_length=1)
    district: str = Field(min_length=1)
    pincode: str = Field(pattern=PINCODE_PATTERN)
    state: str = Field(min_length=1)


class CourseDetailsIn(CamelModel):
    course_id: int
    batch_id: Optional[str] = None
    branch_id: int

    @field_validator("batch_id", mode="before")
    @classmethod
    def batch_as_text(cls, v):
        return str(v) if v is not None else v


class PaymentDetailsIn(CamelModel):
    payment_type: PaymentType = "ONE_TIME"
    registration_fees: float = Field(default=0, ge=0)
    payment_mode: PaymentMode = "Online"
    transaction_id: Optional[str] = None
    number_of_installments: Optional[int] = Field(default=None, ge=1, le=12)
    installment_amount: Optional[float] = Field(default=None, ge=0)


class AdmissionCreate(CamelModel):
    student_id: Optional[int] = None
    personal_details: PersonalDetailsIn
    address: AddressIn
    course_details: CourseDetailsIn
    payment_details: PaymentDetailsIn = PaymentDetailsIn()

    parse_sections = field_validator(
        "personal_details", "address", "course_details", "payment_details", mode="before"
    )(_parse_json_section)


class PersonalDetailsPatch(CamelModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    mobile_number: Optional[str] = Field(default=None, pattern=MOBILE_PATTERN)
    email_id: Optional[EmailStr] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None


class AddressPatch(CamelModel):
    address_line1: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address_line2: Optional[str] = Field(default=None, max_length=200)
    landmark: Optional[str] = Field(default=None, max_length=100)
    city: Optional[str] = None
    district: Optional[str] = None
    pincode: Optional[str] = Field(default=None, pattern=PINCODE_PATTERN)
    state: Optional[str] = None


class CourseDetailsPatch(CamelModel):
    course_id: Optional[int] = None
    batch_id: Optional[str] = None
    branch_id: Optional[int] = None
    course_duration: Optional[str] = None
    course_fees: Optional[float] = Field(default=None, ge=0)


class PaymentDetailsPatch(CamelModel):
    payment_type: Optional[PaymentType] = None
    total_fees: Optional[float] = Field(default=None, ge=0)
    paid_amount: Optional[float] = Field(default=None, ge=0)
    pending_amount: Optional[float] = Field(default=None, ge=0)
    payment_status: Optional[Literal["PAID", "PARTIAL", "PENDING"]] = None
    registration_fees: Optional[float] = Field(default=None, ge=0)
    payment_mode: Optional[PaymentMode] = None
    transaction_id: Optional[str] = None
    number_of_installments: Optional[int] = Field(default=None, ge=1, le=12)
    installment_amount: Optional[float] = Field(default=None, ge=0)


class AdmissionUpdate(CamelModel):
    student_id: Optional[int] = None
    status: Optional[AdmissionStatus] = None
    personal_details: Optional[PersonalDetailsPatch] = None
    address: Optional[AddressPatch] = None
    course_details: Optional[CourseDetailsPatch] = None
    payment_details: Optional[PaymentDetailsPatch] = None

    parse_sections = field_validator(
        "personal_details", "address", "course_details", "payment_details", mode="before"
    )(_parse_json_section)


class PersonalDetailsOut(CamelModel):
    full_name: str
    mobile_number: str
    email_id: Optional[str] = None
    date_of_birth: date
    gender: str
    photo_url: Optional[str] = None


class AddressOut(CamelModel):
    address_line1: str
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    city: str
    district: str
    pincode: str
    state: str


class CourseDetailsOut(CamelModel):
    course_id: int
    batch_id: Optional[str] = None
    branch_id: int
    course_duration: str
    course_fees: float
    course: Optional[CourseBrief] = None
    branch: Optional[BranchBrief] = None


class PaymentDetailsOut(CamelModel):
    payment_type: str
    total_fees: float
    paid_amount: float
    pending_amount: float
    payment_status: str
    registration_fees: float
    payment_mode: str
    transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    number_of_installments: Optional[int] = None
    installment_amount: Optional[float] = None


class AdmissionOut(CamelModel):
    id: int
    receipt_number: str
    status: str
    student_id: int
    student: Optional[UserBrief] = None
    personal_details: PersonalDetailsOut
    address: AddressOut
    course_details: CourseDetailsOut
    payment_details: PaymentDetailsOut
    created_by: Optional[UserBrief] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AdmissionEnvelope(CamelModel):
    message: str
    admission: AdmissionOut


class AdmissionPage(CamelModel):
    admissions: List[AdmissionOut]
    pagination: Pagination


class AdmissionTotals(CamelModel):
    total_admissions: int = 0
    active_admissions: int = 0
    completed_admissions: int = 0
    total_revenue: float = 0


class CourseStat(CamelModel):
    course: str
    count: int
    revenue: float


class AdmissionStats(CamelModel):
    stats: AdmissionTotals
    course_stats: List[CourseStat]


class MessageOut(CamelModel):
    message: str


# ---------------------------------------------------------------- payments

class CreateOrderRequest(CamelModel):
    amount: float = Field(gt=0)
    payment_type: PaymentType
    admission_id: int
    installment_no: Optional[int] = None


class OrderOut(CamelModel):
    order_id: str
    amount: int
    currency: str
    receipt: str
    notes: Dict[str, Any] = {}
    key_id: str


class OrderEnvelope(CamelModel):
    success: bool = True
    data: OrderOut


class VerifyPaymentRequest(CamelModel):
    razorpay_order_id: str = Field(alias="razorpay_order_id", min_length=1)
    razorpay_payment_id: str = Field(alias="razorpay_payment_id", min_length=1)
    razorpay_signature: str = Field(alias="razorpay_signature", min_length=1)
    admission_id: int
    amount: float = Field(gt=0)
    payment_type: PaymentType
    installment_no: Optional[int] = Field(default=None, ge=1)
    installment_id: Optional[int] = None


class VerifyResult(CamelModel):
    payment_id: int
    receipt_number: str
    admission_receipt_number: str
    payment_status: str
    paid_amount: float
    pending_amount: float


class VerifyEnvelope(CamelModel):
    success: bool = True
    message: str
    data: VerifyResult


class PaymentOut(CamelModel):
    id: int
    admission_id: int
    student_id: int
    amount: float
    payment_date: Optional[datetime] = None
    payment_method: str
    payment_type: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    description: str
    receipt_number: str
    status: str
    collected_by_id: Optional[int] = None
    branch_id: int
    installment_number: Optional[int] = None
    is_verified: bool
    verified_at: Optional[datetime] = None


class PaymentList(CamelModel):
    success: bool = True
    payments: List[PaymentOut]


class PaymentPage(CamelModel):
    success: bool = True
    payments: List[PaymentOut]
    pagination: Pagination


class PaymentEnvelope(CamelModel):
    success: bool = True
    payment: PaymentOut


class MethodStat(CamelModel):
    method: str
    count: int
    total: float


class PaymentTotals(CamelModel):
    total_payments: int
    total_revenue: float
    today_payments: int
    today_revenue: float
    payment_methods: List[MethodStat]


class PaymentStatsEnvelope(CamelModel):
    success: bool = True
    stats: PaymentTotals


# ---------------------------------------------------------------- installments

class InstallmentsCreateRequest(CamelModel):
    admission_id: int
    number_of_installments: int = Field(ge=1, le=12)
    installment_amount: float = Field(gt=0)
    start_date: Optional[date] = None


class InstallmentOut(CamelModel):
    id: int
    admission_id: int
    installment_no: int
    amount: float
    due_date: date
    status: str
    paid_date: Optional[datetime] = None
    payment_id: Optional[int] = None
    late_fees: float
    total_amount: float


class InstallmentList(CamelModel):
    success: bool = True
    message: Optional[str] = None
    installments: List[InstallmentOut]


class InstallmentBrief(CamelModel):
    id: int
    amount: float
    installment_no: int
    due_date: date


class InstallmentOrderEnvelope(CamelModel):
    success: bool = True
    order: Dict[str, Any]
    key: str
    installment: InstallmentBrief


class OverdueSweepResult(CamelModel):
    success: bool = True
    updated: int
