from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    JSON,
    event,
    func,
)
from sqlalchemy.orm import relationship

from institute_api.database import Base


class Role:
    SUPER_ADMIN = "Super Admin"
    ADMIN = "Admin"
    BRANCH_ADMIN = "Branch Admin"
    RECEPTION = "Reception"
    TEACHER = "Teacher"
    MARKETING_STAFF = "Marketing Staff"
    ACCOUNTANT = "Accountant"
    STUDENT = "Student"

    ALL = (SUPER_ADMIN, ADMIN, BRANCH_ADMIN, RECEPTION, TEACHER, MARKETING_STAFF, ACCOUNTANT, STUDENT)


class PaymentStatus:
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class InstallmentStatus:
    UNPAID = "UNPAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class PaymentMethod:
    CASH = "Cash"
    CHEQUE = "Cheque"
    ONLINE = "Online"
    UPI = "UPI"
    CARD = "Card"
    GATEWAY = "Gateway"


class TransactionStatus:
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


course_branches = Table(
    "course_branches",
    Base.metadata,
    Column("course_id", Integer, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
    Column("branch_id", Integer, ForeignKey("branches.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(64), nullable=False)
    last_name = Column(String(64), nullable=False, default="")
    email = Column(String(128), unique=True, nullable=False)
    mobile = Column(String(15), nullable=True)
    role = Column(String(32), nullable=False, default=Role.STUDENT)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    branch = relationship("Branch", foreign_keys=[branch_id])


class Branch(Base):
    __tablename__ = "branches"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False)
    code = Column(String(32), unique=True, nullable=False)
    street = Column(String(200), nullable=False)
    city = Column(String(64), nullable=False)
    state = Column(String(64), nullable=False)
    pincode = Column(String(6), nullable=False)
    phone = Column(String(15), nullable=False)
    email = Column(String(128), nullable=False)
    head_of_branch_id = Column(Integer, nullable=True)
    establishment_date = Column(Date, nullable=True)
    facilities = Column(JSON, nullable=False, default=list)
    total_students = Column(Integer, nullable=False, default=0)
    total_staff = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def address(self):
        return {"street": self.street, "city": self.city, "state": self.state, "pincode": self.pincode}

    @property
    def contact(self):
        return {"phone": self.phone, "email": self.email}


class Course(Base):
    __tablename__ = "courses"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    code = Column(String(32), unique=True, nullable=False)
    category = Column(String(64), nullable=False)
    description = Column(Text, nullable=False, default="")
    short_description = Column(String(300), nullable=False, default="")
    level = Column(String(20), nullable=False, default="Beginner")
    status = Column(String(20), nullable=False, default="Active")
    duration = Column(Integer, nullable=False)  # months
    fees = Column(Float, nullable=False)
    max_students = Column(Integer, nullable=False, default=30)
    current_enrollments = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    branches = relationship("Branch", secondary=course_branches, lazy="selectin")


class Admission(Base):
    """One student's enrollment into one course at one branch.

    The personal, address, course and payment sub-documents are stored as
    prefixed columns and exposed as nested dicts through the properties below.
    """
    __tablename__ = "admissions"
    id = Column(Integer, primary_key=True, index=True)
    receipt_number = Column(String(32), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default="Active", index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # personal details
    full_name = Column(String(100), nullable=False)
    mobile_number = Column(String(10), nullable=False)
    email_id = Column(String(128), nullable=True)
    date_of_birth = Column(Date, nullable=False)
    gender = Column(String(10), nullable=False)
    photo_url = Column(String(255), nullable=True)

    # address
    address_line1 = Column(String(200), nullable=False)
    address_line2 = Column(String(200), nullable=True)
    landmark = Column(String(100), nullable=True)
    city = Column(String(64), nullable=False)
    district = Column(String(64), nullable=False)
    pincode = Column(String(6), nullable=False)
    state = Column(String(64), nullable=False)

    # course details
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    batch_id = Column(String(64), nullable=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    course_duration = Column(String(32), nullable=False)
    course_fees = Column(Float, nullable=False, default=0)

    # payment details
    payment_type = Column(String(10), nullable=False, default="ONE_TIME")
    total_fees = Column(Float, nullable=False, default=0)
    paid_amount = Column(Float, nullable=False, default=0)
    pending_amount = Column(Float, nullable=False, default=0)
    payment_status = Column(String(10), nullable=False, default=PaymentStatus.PENDING)
    registration_fees = Column(Float, nullable=False, default=0)
    payment_mode = Column(String(20), nullable=False, default="Online")
    transaction_id = Column(String(128), nullable=True)
    gateway_order_id = Column(String(128), nullable=True)
    number_of_installments = Column(Integer, nullable=True)
    installment_amount = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    student = relationship("User", foreign_keys=[student_id])
    created_by = relationship("User", foreign_keys=[created_by_id])
    course = relationship("Course")
    branch = relationship("Branch")

    PERSONAL_FIELDS = {
        "fullName": "full_name",
        "mobileNumber": "mobile_number",
        "emailId": "email_id",
        "dateOfBirth": "date_of_birth",
        "gender": "gender",
        "photoUrl": "photo_url",
    }
    ADDRESS_FIELDS = {
        "addressLine1": "address_line1",
        "addressLine2": "address_line2",
        "landmark": "landmark",
        "city": "city",
        "district": "district",
        "pincode": "pincode",
        "state": "state",
    }
    COURSE_FIELDS = {
        "courseId": "course_id",
        "batchId": "batch_id",
        "branchId": "branch_id",
        "courseDuration": "course_duration",
        "courseFees": "course_fees",
    }
    PAYMENT_FIELDS = {
        "paymentType": "payment_type",
        "totalFees": "total_fees",
        "paidAmount": "paid_amount",
        "pendingAmount": "pending_amount",
        "paymentStatus": "payment_status",
        "registrationFees": "registration_fees",
        "paymentMode": "payment_mode",
        "transactionId": "transaction_id",
        "gatewayOrderId": "gateway_order_id",
        "numberOfInstallments": "number_of_installments",
        "installmentAmount": "installment_amount",
    }

    def _section(self, fields):
        return {key: getattr(self, column) for key, column in fields.items()}

    @property
    def personal_details(self):
        return self._section(self.PERSONAL_FIELDS)

    @property
    def address(self):
        return self._section(self.ADDRESS_FIELDS)

    @property
    def course_details(self):
        section = self._section(self.COURSE_FIELDS)
        section["course"] = self.course
        section["branch"] = self.branch
        return section

    @property
    def payment_details(self):
        return self._section(self.PAYMENT_FIELDS)


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True, index=True)
    admission_id = Column(Integer, ForeignKey("admissions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    payment_date = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    payment_method = Column(String(20), nullable=False)
    payment_type = Column(String(20), nullable=False)
    gateway_order_id = Column(String(128), nullable=True, index=True)
    gateway_payment_id = Column(String(128), nullable=True, unique=True)
    gateway_signature = Column(String(256), nullable=True)
    description = Column(String(255), nullable=False, default="")
    receipt_number = Column(String(32), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default=TransactionStatus.COMPLETED, index=True)
    collected_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    admission = relationship("Admission")
    student = relationship("User", foreign_keys=[student_id])


class Installment(Base):
    __tablename__ = "installments"
    __table_args__ = (UniqueConstraint("admission_id", "installment_no", name="uq_installment_admission_no"),)

    id = Column(Integer, primary_key=True, index=True)
    admission_id = Column(Integer, ForeignKey("admissions.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_no = Column(Integer, nullable=False)
    amount = Column(Float, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    status = Column(String(10), nullable=False, default=InstallmentStatus.UNPAID, index=True)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    late_fees = Column(Float, nullable=False, default=0)
    total_amount = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    admission = relationship("Admission")


class ReceiptCounter(Base):
    __tablename__ = "receipt_counters"
    __table_args__ = (UniqueConstraint("scope", "year", name="uq_receipt_counter_scope_year"),)

    id = Column(Integer, primary_key=True)
    scope = Column(String(16), nullable=False)
    year = Column(Integer, nullable=False)
    value = Column(Integer, nullable=False, default=0)


@event.listens_for(Installment, "before_insert")
@event.listens_for(Installment, "before_update")
def _installment_total_amount(mapper, connection, target):
    target.total_amount = (target.amount or 0) + (target.late_fees or 0)
