from datetime import datetime, timezone, date
from . import db

def utc_now():
    return datetime.now(timezone.utc)

from flask_login import UserMixin

# ==========================================
# ORGANIZATION / TENANT MODELS
# ==========================================

class Tenant(db.Model):
    __tablename__ = "tenants"
    tenant_id = db.Column(db.Integer, primary_key=True)
    tenant_name = db.Column(db.String(128), nullable=False)
    business_code = db.Column(db.String(32), unique=True, nullable=False)
    business_type = db.Column(db.String(32), default="school")  # school, kindergarten, retail, ...
    address = db.Column(db.Text)
    contact_email = db.Column(db.String(128))
    contact_phone = db.Column(db.String(32))
    logo_path = db.Column(db.String(255))
    motto = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utc_now)

    # Kill switch per tenant
    is_active = db.Column(db.Boolean, default=True)

    users = db.relationship("User", backref="tenant", lazy=True)


class User(UserMixin, db.Model):
    __tablename__ = "users"
    user_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"))
    username = db.Column(db.String(128), unique=True, nullable=False)
    full_name = db.Column(db.String(128))
    email = db.Column(db.String(128))
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(32), default="teacher")  # admin, head_teacher, bursar, teacher, cashier
    is_active = db.Column(db.Boolean, default=True)
    is_super_admin = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utc_now)

    def get_id(self):
        return str(self.user_id)

    @property
    def display_name(self):
        return self.full_name or self.username


class SystemConfig(db.Model):
    """
    Global configuration for the Super Admin.
    Key-Value store for system-wide settings like 'maintenance_mode'.
    """
    __tablename__ = "system_config"
    config_key = db.Column(db.String(64), primary_key=True)
    config_value = db.Column(db.Text)
    description = db.Column(db.String(255))


# ==========================================
# ACADEMIC SETUP
# ==========================================

class SchoolClass(db.Model):
    __tablename__ = "school_classes"
    class_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(64), nullable=False)  # e.g. P.5, S.2, Baby Class
    level = db.Column(db.String(32))  # nursery, primary, secondary
    section = db.Column(db.String(16))  # stream: East, West, A, B
    capacity = db.Column(db.Integer, default=40)
    is_ecd = db.Column(db.Boolean, default=False)
    class_teacher_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    is_active = db.Column(db.Boolean, default=True)

    class_teacher = db.relationship("User", foreign_keys=[class_teacher_id_fk])

    __table_args__ = (
        db.UniqueConstraint("tenant_id_fk", "name", "section", name="uq_class_name_section"),
    )

    @property
    def display_name(self):
        return f"{self.name} {self.section}".strip() if self.section else self.name


class Subject(db.Model):
    __tablename__ = "subjects"
    subject_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(20))
    level = db.Column(db.String(32))
    category = db.Column(db.String(32), default="core")  # core, elective
    display_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)


class AcademicTerm(db.Model):
    __tablename__ = "academic_terms"
    term_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(64), nullable=False)  # Term 1 2025
    term_number = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    is_current = db.Column(db.Boolean, default=False)

    __table_args__ = (
        db.UniqueConstraint("tenant_id_fk", "year", "term_number", name="uq_term_year_number"),
    )


# ==========================================
# STUDENTS & ATTENDANCE
# ==========================================

class Student(db.Model):
    __tablename__ = "students"
    student_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    class_id_fk = db.Column(db.Integer, db.ForeignKey("school_classes.class_id"))
    admission_number = db.Column(db.String(32), nullable=False)
    full_name = db.Column(db.String(128), nullable=False)
    gender = db.Column(db.String(16))
    date_of_birth = db.Column(db.Date)
    nationality = db.Column(db.String(64), default="Ugandan")
    religion = db.Column(db.String(64))
    address = db.Column(db.String(255))
    photo_url = db.Column(db.String(255))

    # Guardian / parent contacts
    guardian_name = db.Column(db.String(128))
    guardian_phone = db.Column(db.String(32))
    guardian_email = db.Column(db.String(128))
    guardian_relationship = db.Column(db.String(32))
    father_name = db.Column(db.String(128))
    father_phone = db.Column(db.String(32))
    mother_name = db.Column(db.String(128))
    mother_phone = db.Column(db.String(32))

    boarding_status = db.Column(db.String(16), default="day")  # day, boarding
    admission_date = db.Column(db.Date, default=date.today)
    previous_school = db.Column(db.String(128))
    medical_notes = db.Column(db.Text)

    # Lifecycle
    status = db.Column(db.String(16), default="active")  # active, withdrawn
    is_active = db.Column(db.Boolean, default=True)
    consecutive_absence_days = db.Column(db.Integer, default=0)
    last_attendance_date = db.Column(db.Date)
    withdrawal_date = db.Column(db.Date)
    withdrawal_type = db.Column(db.String(16))  # manual, transfer, expulsion, automatic
    withdrawal_reason = db.Column(db.Text)
    withdrawn_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    school_class = db.relationship("SchoolClass", backref="students")
    withdrawn_by = db.relationship("User", foreign_keys=[withdrawn_by_id_fk])

    __table_args__ = (
        db.UniqueConstraint("tenant_id_fk", "admission_number", name="uq_student_admission_no"),
    )

    @property
    def first_name(self):
        parts = (self.full_name or "").split()
        return parts[0] if parts else ""


class AttendanceRecord(db.Model):
    __tablename__ = "attendance_records"
    attendance_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    class_id_fk = db.Column(db.Integer, db.ForeignKey("school_classes.class_id"))
    date_marked = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False)  # present, absent, late, excused
    notes = db.Column(db.String(255))
    recorded_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    created_at = db.Column(db.DateTime, default=utc_now)

    __table_args__ = (
        db.UniqueConstraint("student_id_fk", "date_marked", name="uq_attendance_student_date"),
    )


class SchoolHoliday(db.Model):
    __tablename__ = "school_holidays"
    holiday_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    holiday_type = db.Column(db.String(32), default="public")  # public, school, mid_term


# ==========================================
# STUDENT LIFECYCLE
# ==========================================

class WithdrawalSettings(db.Model):
    __tablename__ = "withdrawal_settings"
    setting_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False, unique=True)
    absence_threshold_days = db.Column(db.Integer, default=45)
    minimum_attendance_window_days = db.Column(db.Integer, default=14)
    exclude_holidays = db.Column(db.Boolean, default=True)
    auto_void_fees = db.Column(db.Boolean, default=True)
    require_dos_approval = db.Column(db.Boolean, default=False)
    notification_enabled = db.Column(db.Boolean, default=True)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)


class AbsenceAlert(db.Model):
    __tablename__ = "absence_alerts"
    alert_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    alert_type = db.Column(db.String(16), nullable=False)  # warning, critical, auto_withdrawn
    consecutive_days = db.Column(db.Integer, default=0)
    message = db.Column(db.String(255))
    acknowledged = db.Column(db.Boolean, default=False)
    acknowledged_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    acknowledged_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)

    student = db.relationship("Student")
    acknowledged_by = db.relationship("User")


class StudentStatusLog(db.Model):
    __tablename__ = "student_status_logs"
    log_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    action = db.Column(db.String(16), nullable=False)  # withdrawn, reinstated
    from_status = db.Column(db.String(16))
    to_status = db.Column(db.String(16))
    withdrawal_type = db.Column(db.String(16))
    reason = db.Column(db.Text)
    fees_voided = db.Column(db.Float, default=0.0)
    performed_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    created_at = db.Column(db.DateTime, default=utc_now)

    performed_by = db.relationship("User")


# ==========================================
# FEES
# ==========================================

class StudentFee(db.Model):
    __tablename__ = "student_fees"
    fee_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    term_id_fk = db.Column(db.Integer, db.ForeignKey("academic_terms.term_id"))
    description = db.Column(db.String(128), default="Tuition")
    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    amount_paid = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(16), default="pending")  # pending, partial, paid, voided
    due_date = db.Column(db.Date)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    student = db.relationship("Student", backref="fees")
    term = db.relationship("AcademicTerm")

    @property
    def balance(self):
        return max(0.0, (self.total_amount or 0.0) - (self.amount_paid or 0.0))


class FeePayment(db.Model):
    __tablename__ = "fee_payments"
    payment_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    fee_id_fk = db.Column(db.Integer, db.ForeignKey("student_fees.fee_id"), nullable=False)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    payment_method = db.Column(db.String(32), default="cash")  # cash, mobile_money, bank
    reference = db.Column(db.String(64))
    paid_at = db.Column(db.DateTime, default=utc_now)
    received_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))

    fee = db.relationship("StudentFee", backref="payments")


# ==========================================
# REPORT CARDS
# ==========================================

class ReportCard(db.Model):
    __tablename__ = "report_cards"
    report_card_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    term_id_fk = db.Column(db.Integer, db.ForeignKey("academic_terms.term_id"), nullable=False)
    class_id_fk = db.Column(db.Integer, db.ForeignKey("school_classes.class_id"))
    total_score = db.Column(db.Float)
    average_score = db.Column(db.Float)
    overall_grade = db.Column(db.String(4))
    class_rank = db.Column(db.Integer)
    total_students_in_class = db.Column(db.Integer)
    days_present = db.Column(db.Integer, default=0)
    days_absent = db.Column(db.Integer, default=0)
    total_school_days = db.Column(db.Integer, default=0)
    class_teacher_comment = db.Column(db.Text)
    head_teacher_comment = db.Column(db.Text)
    discipline_remark = db.Column(db.String(255))
    conduct = db.Column(db.String(32))
    fees_balance = db.Column(db.Float, default=0.0)
    next_term_fees = db.Column(db.Float)
    next_term_start_date = db.Column(db.Date)
    status = db.Column(db.String(16), default="draft")  # draft, published
    published_at = db.Column(db.DateTime)
    created_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    student = db.relationship("Student")
    term = db.relationship("AcademicTerm")
    school_class = db.relationship("SchoolClass")
    scores = db.relationship("ReportCardScore", backref="report_card", lazy=True, cascade="all, delete-orphan")
    ratings = db.relationship("LearningRating", backref="report_card", lazy=True, cascade="all, delete-orphan")

    __table_args__ = (
        db.UniqueConstraint("student_id_fk", "term_id_fk", name="uq_report_card_student_term"),
    )


class ReportCardScore(db.Model):
    __tablename__ = "report_card_scores"
    score_id = db.Column(db.Integer, primary_key=True)
    report_card_id_fk = db.Column(db.Integer, db.ForeignKey("report_cards.report_card_id"), nullable=False)
    subject_id_fk = db.Column(db.Integer, db.ForeignKey("subjects.subject_id"), nullable=False)
    formative_score = db.Column(db.Float, default=0.0)
    school_based_score = db.Column(db.Float, default=0.0)
    total_score = db.Column(db.Float, default=0.0)
    grade = db.Column(db.String(4))
    grade_descriptor = db.Column(db.String(32))
    subject_remark = db.Column(db.String(255))
    teacher_initials = db.Column(db.String(8))

    subject = db.relationship("Subject")

    __table_args__ = (
        db.UniqueConstraint("report_card_id_fk", "subject_id_fk", name="uq_report_card_subject"),
    )


class LearningArea(db.Model):
    """ECD learning area (e.g. 'Language development')."""
    __tablename__ = "learning_areas"
    area_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    display_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)


class LearningRating(db.Model):
    __tablename__ = "learning_ratings"
    rating_id = db.Column(db.Integer, primary_key=True)
    report_card_id_fk = db.Column(db.Integer, db.ForeignKey("report_cards.report_card_id"), nullable=False)
    area_id_fk = db.Column(db.Integer, db.ForeignKey("learning_areas.area_id"), nullable=False)
    rating_code = db.Column(db.String(24), nullable=False)
    numeric_score = db.Column(db.Float, nullable=False)
    remark = db.Column(db.String(255))

    area = db.relationship("LearningArea")

    __table_args__ = (
        db.UniqueConstraint("report_card_id_fk", "area_id_fk", name="uq_rating_card_area"),
    )


# ==========================================
# EXAMS
# ==========================================

class ExamType(db.Model):
    __tablename__ = "exam_types"
    exam_type_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(64), nullable=False)  # Beginning of Term, Mid Term, End of Term
    code = db.Column(db.String(16), nullable=False)
    weight_percentage = db.Column(db.Float, default=100.0)
    description = db.Column(db.String(255))
    display_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id_fk", "code", name="uq_exam_type_code"),
    )


class Exam(db.Model):
    __tablename__ = "exams"
    exam_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    term_id_fk = db.Column(db.Integer, db.ForeignKey("academic_terms.term_id"))
    exam_type_id_fk = db.Column(db.Integer, db.ForeignKey("exam_types.exam_type_id"), nullable=False)
    class_id_fk = db.Column(db.Integer, db.ForeignKey("school_classes.class_id"), nullable=False)
    subject_id_fk = db.Column(db.Integer, db.ForeignKey("subjects.subject_id"), nullable=False)
    exam_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time)
    end_time = db.Column(db.Time)
    duration_minutes = db.Column(db.Integer, default=60)
    max_marks = db.Column(db.Float, default=100.0)
    venue = db.Column(db.String(64))
    instructions = db.Column(db.Text)
    status = db.Column(db.String(16), default="scheduled")  # scheduled, ongoing, completed, cancelled
    created_at = db.Column(db.DateTime, default=utc_now)

    exam_type = db.relationship("ExamType")
    term = db.relationship("AcademicTerm")
    school_class = db.relationship("SchoolClass")
    subject = db.relationship("Subject")
    scores = db.relationship("ExamScore", backref="exam", lazy=True, cascade="all, delete-orphan")


class ExamScore(db.Model):
    __tablename__ = "exam_scores"
    score_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    exam_id_fk = db.Column(db.Integer, db.ForeignKey("exams.exam_id"), nullable=False)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    marks_obtained = db.Column(db.Float)
    is_absent = db.Column(db.Boolean, default=False)
    remarks = db.Column(db.String(255))
    graded_at = db.Column(db.DateTime)
    graded_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))

    student = db.relationship("Student")

    __table_args__ = (
        db.UniqueConstraint("exam_id_fk", "student_id_fk", name="uq_exam_score_student"),
    )


# ==========================================
# TIMETABLE
# ==========================================

class TimetablePeriod(db.Model):
    __tablename__ = "timetable_periods"
    period_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(32), nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    period_type = db.Column(db.String(16), default="lesson")  # lesson, break, lunch, assembly
    display_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)


class TimetableEntry(db.Model):
    __tablename__ = "timetable_entries"
    entry_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    class_id_fk = db.Column(db.Integer, db.ForeignKey("school_classes.class_id"), nullable=False)
    subject_id_fk = db.Column(db.Integer, db.ForeignKey("subjects.subject_id"))
    teacher_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    period_id_fk = db.Column(db.Integer, db.ForeignKey("timetable_periods.period_id"), nullable=False)
    day_of_week = db.Column(db.Integer, nullable=False)  # 0=Sun, 1=Mon ... 6=Sat
    room = db.Column(db.String(32))
    is_active = db.Column(db.Boolean, default=True)

    subject = db.relationship("Subject")
    teacher = db.relationship("User")
    period = db.relationship("TimetablePeriod")
    school_class = db.relationship("SchoolClass")


# ==========================================
# TERM CALENDAR
# ==========================================

class CalendarEvent(db.Model):
    __tablename__ = "calendar_events"
    event_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    term_id_fk = db.Column(db.Integer, db.ForeignKey("academic_terms.term_id"))
    title = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text)
    event_type = db.Column(db.String(16), default="general")
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time)
    end_time = db.Column(db.Time)
    is_all_day = db.Column(db.Boolean, default=True)
    color = db.Column(db.String(16))
    is_published = db.Column(db.Boolean, default=False)
    created_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    created_at = db.Column(db.DateTime, default=utc_now)

    term = db.relationship("AcademicTerm")


# ==========================================
# POINT OF SALE & FINANCE
# ==========================================

class Product(db.Model):
    __tablename__ = "products"
    product_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    sku = db.Column(db.String(64))
    barcode = db.Column(db.String(64))
    category = db.Column(db.String(64))
    unit_price = db.Column(db.Float, nullable=False, default=0.0)
    cost_price = db.Column(db.Float)
    stock_quantity = db.Column(db.Integer, default=0)
    min_stock_level = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)


class Customer(db.Model):
    __tablename__ = "customers"
    customer_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32))
    email = db.Column(db.String(128))
    created_at = db.Column(db.DateTime, default=utc_now)


class Sale(db.Model):
    __tablename__ = "sales"
    sale_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    customer_id_fk = db.Column(db.Integer, db.ForeignKey("customers.customer_id"))
    order_number = db.Column(db.Integer, nullable=False)
    sale_date = db.Column(db.DateTime, default=utc_now)
    subtotal = db.Column(db.Float, default=0.0)
    discount_amount = db.Column(db.Float, default=0.0)
    total_amount = db.Column(db.Float, default=0.0)
    payment_method = db.Column(db.String(32), default="cash")  # cash, mobile_money, card, exchange_credit
    payment_status = db.Column(db.String(16), default="paid")
    order_type = db.Column(db.String(16), default="sale")  # sale, exchange
    order_status = db.Column(db.String(16), default="completed")
    return_status = db.Column(db.String(16))  # partial_return, full_return, voided, exchanged
    notes = db.Column(db.Text)
    created_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))

    customer = db.relationship("Customer")
    created_by = db.relationship("User")
    items = db.relationship("SaleItem", backref="sale", lazy=True, cascade="all, delete-orphan")

    __table_args__ = (
        db.UniqueConstraint("tenant_id_fk", "order_number", name="uq_sale_order_number"),
    )


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    item_id = db.Column(db.Integer, primary_key=True)
    sale_id_fk = db.Column(db.Integer, db.ForeignKey("sales.sale_id"), nullable=False)
    product_id_fk = db.Column(db.Integer, db.ForeignKey("products.product_id"))
    product_name = db.Column(db.String(128))
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    total_price = db.Column(db.Float, nullable=False)

    product = db.relationship("Product")


class SaleReturn(db.Model):
    __tablename__ = "sale_returns"
    return_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    sale_id_fk = db.Column(db.Integer, db.ForeignKey("sales.sale_id"), nullable=False)
    return_type = db.Column(db.String(16), nullable=False)  # refund, void, exchange
    reason = db.Column(db.Text, nullable=False)
    total_refund_amount = db.Column(db.Float, default=0.0)
    status = db.Column(db.String(16), default="completed")
    notes = db.Column(db.Text)
    exchange_sale_id_fk = db.Column(db.Integer, db.ForeignKey("sales.sale_id"))
    processed_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    created_at = db.Column(db.DateTime, default=utc_now)

    sale = db.relationship("Sale", foreign_keys=[sale_id_fk], backref="returns")
    exchange_sale = db.relationship("Sale", foreign_keys=[exchange_sale_id_fk])
    processed_by = db.relationship("User")
    items = db.relationship("SaleReturnItem", backref="sale_return", lazy=True, cascade="all, delete-orphan")


class SaleReturnItem(db.Model):
    __tablename__ = "sale_return_items"
    return_item_id = db.Column(db.Integer, primary_key=True)
    return_id_fk = db.Column(db.Integer, db.ForeignKey("sale_returns.return_id"), nullable=False)
    sale_item_id_fk = db.Column(db.Integer, db.ForeignKey("sale_items.item_id"), nullable=False)
    product_id_fk = db.Column(db.Integer, db.ForeignKey("products.product_id"))
    product_name = db.Column(db.String(128))
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    refund_amount = db.Column(db.Float, nullable=False)
    restock = db.Column(db.Boolean, default=True)


class Expense(db.Model):
    __tablename__ = "expenses"
    expense_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    category = db.Column(db.String(64), default="Other")
    amount = db.Column(db.Float, nullable=False)
    expense_date = db.Column(db.Date, default=date.today)
    description = db.Column(db.String(255))
    recorded_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    created_at = db.Column(db.DateTime, default=utc_now)


# ==========================================
# ASSETS
# ==========================================

class SchoolAsset(db.Model):
    __tablename__ = "school_assets"
    asset_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"), nullable=False)
    asset_code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(32), default="other")
    sub_category = db.Column(db.String(64))
    quantity = db.Column(db.Integer, default=1)
    unit_cost = db.Column(db.Float, default=0.0)
    location = db.Column(db.String(128))
    condition = db.Column(db.String(16), default="good")
    purchase_date = db.Column(db.Date)
    supplier = db.Column(db.String(128))
    invoice_number = db.Column(db.String(64))
    warranty_expiry = db.Column(db.Date)
    useful_life_years = db.Column(db.Integer, default=5)
    salvage_value = db.Column(db.Float, default=0.0)
    serial_number = db.Column(db.String(64))
    barcode = db.Column(db.String(64))
    notes = db.Column(db.Text)
    assigned_class_id_fk = db.Column(db.Integer, db.ForeignKey("school_classes.class_id"))
    assigned_to_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    assigned_class = db.relationship("SchoolClass")
    assigned_to = db.relationship("User")

    __table_args__ = (
        db.UniqueConstraint("tenant_id_fk", "asset_code", name="uq_asset_code"),
    )


# ==========================================
# BACKUPS
# ==========================================

class SystemBackup(db.Model):
    __tablename__ = "system_backups"
    backup_id = db.Column(db.Integer, primary_key=True)
    tenant_id_fk = db.Column(db.Integer, db.ForeignKey("tenants.tenant_id"))
    backup_type = db.Column(db.String(16), default="export")  # export, import
    categories = db.Column(db.Text)  # JSON list
    tables_included = db.Column(db.Text)  # JSON list
    row_counts = db.Column(db.Text)  # JSON object
    format = db.Column(db.String(8))  # xlsx, zip
    file_name = db.Column(db.String(255))
    created_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    created_at = db.Column(db.DateTime, default=utc_now)

    created_by = db.relationship("User")


class TenantBackup(db.Model):
    """Snapshot of a deleted tenant's rows, kept after the tenant is gone."""
    __tablename__ = "tenant_backups"
    backup_id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False)
    tenant_name = db.Column(db.String(128))
    business_type = db.Column(db.String(32))
    backup_data = db.Column(db.Text, nullable=False)  # JSON {table: [rows]}
    reason = db.Column(db.Text)
    deleted_by_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    deleted_at = db.Column(db.DateTime, default=utc_now)
