from datetime import date, datetime
from enum import Enum
from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lingowow.db import Base


class Role(str, Enum):
    ADMIN = 'admin'
    TEACHER = 'teacher'
    STUDENT = 'student'
    GUEST = 'guest'


class EnrollmentStatus(str, Enum):
    PENDING = 'PENDING'
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


class BookingStatus(str, Enum):
    CONFIRMED = 'CONFIRMED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


class AttendanceStatus(str, Enum):
    PRESENT = 'PRESENT'


class CreditTransactionType(str, Enum):
    PURCHASE = 'PURCHASE'
    SPEND_PRODUCT = 'SPEND_PRODUCT'
    SPEND_PLAN = 'SPEND_PLAN'
    SPEND_COURSE = 'SPEND_COURSE'
    SPEND_CLASS = 'SPEND_CLASS'
    REFUND = 'REFUND'
    BONUS = 'BONUS'
    ADMIN_ADJUSTMENT = 'ADMIN_ADJUSTMENT'
    REWARD = 'REWARD'
    EXPIRED = 'EXPIRED'


class CouponType(str, Enum):
    PERCENTAGE = 'PERCENTAGE'
    FIXED_AMOUNT = 'FIXED_AMOUNT'


class InvoiceStatus(str, Enum):
    DRAFT = 'DRAFT'
    SENT = 'SENT'
    PAID = 'PAID'
    OVERDUE = 'OVERDUE'
    CANCELLED = 'CANCELLED'


class TeacherRank(Base):
    __tablename__ = 'teacher_ranks'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(80), unique=True)
    rate_multiplier: Mapped[float] = mapped_column(Float, default=1.0)


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120), default='')
    last_name: Mapped[str] = mapped_column(String(120), default='')
    role: Mapped[str] = mapped_column(String(20), default=Role.STUDENT.value, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), default='')
    timezone: Mapped[str] = mapped_column(String(60), default='America/Lima')
    teacher_rank_id: Mapped[int | None] = mapped_column(ForeignKey('teacher_ranks.id'), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    teacher_rank: Mapped['TeacherRank | None'] = relationship('TeacherRank')
    availability: Mapped[list['TeacherAvailability']] = relationship('TeacherAvailability', back_populates='teacher', cascade='all, delete-orphan')

    @property
    def full_name(self) -> str:
        return f'{self.name} {self.last_name}'.strip()


class TeacherAvailability(Base):
    __tablename__ = 'teacher_availability'
    __table_args__ = (
        Index('ix_teacher_availability_teacher_day', 'teacher_id', 'day_of_week'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    day_of_week: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))

    teacher: Mapped['User'] = relationship('User', back_populates='availability')


class Course(Base):
    __tablename__ = 'courses'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(200))
    level: Mapped[str] = mapped_column(String(40), default='')
    class_duration_minutes: Mapped[int] = mapped_column(Integer, default=60)
    default_payment_per_class: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_published: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class TeacherCourse(Base):
    __tablename__ = 'teacher_courses'
    __table_args__ = (
        UniqueConstraint('teacher_id', 'course_id', name='uq_teacher_courses_teacher_course'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    payment_per_class: Mapped[float | None] = mapped_column(Float, nullable=True)


class AcademicPeriod(Base):
    __tablename__ = 'academic_periods'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    start_date: Mapped[date] = mapped_column(Date, index=True)
    end_date: Mapped[date] = mapped_column(Date, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_special_week: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    enrollments: Mapped[list['Enrollment']] = relationship('Enrollment', back_populates='academic_period')


class Enrollment(Base):
    __tablename__ = 'enrollments'
    __table_args__ = (
        UniqueConstraint('student_id', 'course_id', 'academic_period_id', name='uq_enrollments_student_course_period'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id'), index=True)
    academic_period_id: Mapped[int | None] = mapped_column(ForeignKey('academic_periods.id'), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default=EnrollmentStatus.PENDING.value, index=True)
    classes_total: Mapped[int] = mapped_column(Integer, default=0)
    classes_attended: Mapped[int] = mapped_column(Integer, default=0)
    schedule_key: Mapped[str] = mapped_column(String(64), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student: Mapped['User'] = relationship('User', foreign_keys=[student_id])
    course: Mapped['Course'] = relationship('Course')
    academic_period: Mapped['AcademicPeriod | None'] = relationship('AcademicPeriod', back_populates='enrollments')
    schedules: Mapped[list['ClassSchedule']] = relationship('ClassSchedule', back_populates='enrollment', cascade='all, delete-orphan')
    bookings: Mapped[list['ClassBooking']] = relationship('ClassBooking', back_populates='enrollment')


class ClassSchedule(Base):
    __tablename__ = 'class_schedules'
    __table_args__ = (
        UniqueConstraint('enrollment_id', 'day_of_week', 'start_time', name='uq_class_schedules_enrollment_day_start'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    enrollment_id: Mapped[int] = mapped_column(ForeignKey('enrollments.id'), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    day_of_week: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    enrollment: Mapped['Enrollment'] = relationship('Enrollment', back_populates='schedules')


class ClassBooking(Base):
    __tablename__ = 'class_bookings'
    __table_args__ = (
        UniqueConstraint('teacher_id', 'day', 'time_slot', name='uq_class_bookings_teacher_day_slot'),
        Index('ix_class_bookings_student_day', 'student_id', 'day'),
        Index('ix_class_bookings_status_day', 'status', 'day'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    enrollment_id: Mapped[int] = mapped_column(ForeignKey('enrollments.id'), index=True)
    day: Mapped[date] = mapped_column(Date, index=True)
    time_slot: Mapped[str] = mapped_column(String(11))
    status: Mapped[str] = mapped_column(String(20), default=BookingStatus.CONFIRMED.value, index=True)
    notes: Mapped[str] = mapped_column(Text, default='')
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    teacher: Mapped['User'] = relationship('User', foreign_keys=[teacher_id])
    student: Mapped['User'] = relationship('User', foreign_keys=[student_id])
    enrollment: Mapped['Enrollment'] = relationship('Enrollment', back_populates='bookings')
    teacher_attendances: Mapped[list['TeacherAttendance']] = relationship('TeacherAttendance', back_populates='booking')
    attendances: Mapped[list['ClassAttendance']] = relationship('ClassAttendance', back_populates='booking')
    video_calls: Mapped[list['VideoCall']] = relationship('VideoCall', back_populates='booking', order_by='VideoCall.id')


class VideoCall(Base):
    __tablename__ = 'video_calls'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey('class_bookings.id'), index=True)
    room_name: Mapped[str] = mapped_column(String(120), default='')
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    booking: Mapped['ClassBooking'] = relationship('ClassBooking', back_populates='video_calls')


class TeacherAttendance(Base):
    __tablename__ = 'teacher_attendances'
    __table_args__ = (
        UniqueConstraint('class_id', 'teacher_id', name='uq_teacher_attendances_class_teacher'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('class_bookings.id'), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    status: Mapped[str] = mapped_column(String(20), default=AttendanceStatus.PRESENT.value)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    booking: Mapped['ClassBooking'] = relationship('ClassBooking', back_populates='teacher_attendances')


class ClassAttendance(Base):
    __tablename__ = 'class_attendances'
    __table_args__ = (
        UniqueConstraint('class_id', 'student_id', name='uq_class_attendances_class_student'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('class_bookings.id'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    enrollment_id: Mapped[int] = mapped_column(ForeignKey('enrollments.id'), index=True)
    status: Mapped[str] = mapped_column(String(20), default=AttendanceStatus.PRESENT.value)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    booking: Mapped['ClassBooking'] = relationship('ClassBooking', back_populates='attendances')


class TeacherIncentive(Base):
    __tablename__ = 'teacher_incentives'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    period_id: Mapped[int | None] = mapped_column(ForeignKey('academic_periods.id'), nullable=True, index=True)
    bonus_amount: Mapped[float] = mapped_column(Float, default=0.0)
    reason: Mapped[str] = mapped_column(String(255), default='')
    paid: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class UserCreditBalance(Base):
    __tablename__ = 'user_credit_balances'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), unique=True, index=True)
    total_credits: Mapped[int] = mapped_column(Integer, default=0)
    available_credits: Mapped[int] = mapped_column(Integer, default=0)
    spent_credits: Mapped[int] = mapped_column(Integer, default=0)
    bonus_credits: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CreditTransaction(Base):
    __tablename__ = 'credit_transactions'
    __table_args__ = (
        Index('ix_credit_transactions_user_created', 'user_id', 'created_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    transaction_type: Mapped[str] = mapped_column(String(30), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    balance_before: Mapped[int] = mapped_column(Integer)
    balance_after: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(String(255), default='')
    related_entity_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    related_entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[str] = mapped_column(Text, default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class CreditPackage(Base):
    __tablename__ = 'credit_packages'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    description: Mapped[str] = mapped_column(Text, default='')
    credits: Mapped[int] = mapped_column(Integer)
    bonus_credits: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[float] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    is_popular: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class CreditPackagePurchase(Base):
    __tablename__ = 'credit_package_purchases'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    package_id: Mapped[int] = mapped_column(ForeignKey('credit_packages.id'), index=True)
    invoice_id: Mapped[int | None] = mapped_column(ForeignKey('invoices.id'), nullable=True, index=True)
    credits_received: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default='CONFIRMED')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Plan(Base):
    __tablename__ = 'plans'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    course_id: Mapped[int | None] = mapped_column(ForeignKey('courses.id'), nullable=True, index=True)
    price: Mapped[float] = mapped_column(Float, default=0.0)
    includes_classes: Mapped[bool] = mapped_column(Boolean, default=False)
    classes_per_period: Mapped[int | None] = mapped_column(Integer, nullable=True)
    accepts_credits: Mapped[bool] = mapped_column(Boolean, default=False)
    credit_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    course: Mapped['Course | None'] = relationship('Course')


class Coupon(Base):
    __tablename__ = 'coupons'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    code: Mapped[str] = mapped_column(String(60), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120), default='')
    description: Mapped[str] = mapped_column(Text, default='')
    type: Mapped[str] = mapped_column(String(20), default=CouponType.PERCENTAGE.value)
    value: Mapped[float] = mapped_column(Float, default=0.0)
    min_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_discount: Mapped[float | None] = mapped_column(Float, nullable=True)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    user_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    restricted_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'), nullable=True)
    restricted_plan_id: Mapped[int | None] = mapped_column(ForeignKey('plans.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Invoice(Base):
    __tablename__ = 'invoices'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    invoice_number: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    status: Mapped[str] = mapped_column(String(20), default=InvoiceStatus.DRAFT.value, index=True)
    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    discount: Mapped[float] = mapped_column(Float, default=0.0)
    tax: Mapped[float] = mapped_column(Float, default=0.0)
    total: Mapped[float] = mapped_column(Float, default=0.0)
    currency: Mapped[str] = mapped_column(String(10), default='USD')
    coupon_id: Mapped[int | None] = mapped_column(ForeignKey('coupons.id'), nullable=True, index=True)
    payment_method: Mapped[str] = mapped_column(String(30), default='')
    external_order_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    notes: Mapped[str] = mapped_column(Text, default='')
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    items: Mapped[list['InvoiceItem']] = relationship('InvoiceItem', back_populates='invoice', cascade='all, delete-orphan')


class InvoiceItem(Base):
    __tablename__ = 'invoice_items'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey('invoices.id'), index=True)
    plan_id: Mapped[int | None] = mapped_column(ForeignKey('plans.id'), nullable=True)
    package_id: Mapped[int | None] = mapped_column(ForeignKey('credit_packages.id'), nullable=True)
    name: Mapped[str] = mapped_column(String(200))
    price: Mapped[float] = mapped_column(Float)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    total: Mapped[float] = mapped_column(Float)

    invoice: Mapped['Invoice'] = relationship('Invoice', back_populates='items')


class RateLimitState(Base):
    __tablename__ = 'rate_limit_states'
    __table_args__ = (
        UniqueConstraint('scope_type', 'scope_key', 'action_name', name='uq_rate_limit_scope_action'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    scope_type: Mapped[str] = mapped_column(String(20), default='user', index=True)
    scope_key: Mapped[str] = mapped_column(String(120), default='', index=True)
    action_name: Mapped[str] = mapped_column(String(80), default='', index=True)
    window_start: Mapped[datetime] = mapped_column(DateTime, index=True)
    request_count: Mapped[int] = mapped_column(Integer, default=0)
