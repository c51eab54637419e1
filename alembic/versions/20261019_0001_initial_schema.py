"""initial lingowow schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261019_0001'
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column('id', sa.Integer(), primary_key=True)


def upgrade() -> None:
    op.create_table(
        'teacher_ranks',
        _id(),
        sa.Column('name', sa.String(length=80), nullable=False, unique=True),
        sa.Column('rate_multiplier', sa.Float(), nullable=False, server_default='1.0'),
    )

    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='student'),
        sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('timezone', sa.String(length=60), nullable=False, server_default='America/Lima'),
        sa.Column('teacher_rank_id', sa.Integer(), sa.ForeignKey('teacher_ranks.id'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_teacher_rank_id', 'users', ['teacher_rank_id'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])

    op.create_table(
        'teacher_availability',
        _id(),
        sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.String(length=5), nullable=False),
        sa.Column('end_time', sa.String(length=5), nullable=False),
    )
    op.create_index('ix_teacher_availability_teacher_day', 'teacher_availability', ['teacher_id', 'day_of_week'])

    op.create_table(
        'courses',
        _id(),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('level', sa.String(length=40), nullable=False, server_default=''),
        sa.Column('class_duration_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('default_payment_per_class', sa.Float(), nullable=True),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'teacher_courses',
        _id(),
        sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=False),
        sa.Column('payment_per_class', sa.Float(), nullable=True),
        sa.UniqueConstraint('teacher_id', 'course_id', name='uq_teacher_courses_teacher_course'),
    )

    op.create_table(
        'academic_periods',
        _id(),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_special_week', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_academic_periods_start_date', 'academic_periods', ['start_date'])
    op.create_index('ix_academic_periods_end_date', 'academic_periods', ['end_date'])
    op.create_index('ix_academic_periods_is_active', 'academic_periods', ['is_active'])

    op.create_table(
        'enrollments',
        _id(),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=False),
        sa.Column('academic_period_id', sa.Integer(), sa.ForeignKey('academic_periods.id'), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('classes_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('classes_attended', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('schedule_key', sa.String(length=64), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('student_id', 'course_id', 'academic_period_id', name='uq_enrollments_student_course_period'),
    )
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'])
    op.create_index('ix_enrollments_academic_period_id', 'enrollments', ['academic_period_id'])
    op.create_index('ix_enrollments_status', 'enrollments', ['status'])

    op.create_table(
        'class_schedules',
        _id(),
        sa.Column('enrollment_id', sa.Integer(), sa.ForeignKey('enrollments.id'), nullable=False),
        sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.String(length=5), nullable=False),
        sa.Column('end_time', sa.String(length=5), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('enrollment_id', 'day_of_week', 'start_time', name='uq_class_schedules_enrollment_day_start'),
    )
    op.create_index('ix_class_schedules_enrollment_id', 'class_schedules', ['enrollment_id'])
    op.create_index('ix_class_schedules_teacher_id', 'class_schedules', ['teacher_id'])

    op.create_table(
        'class_bookings',
        _id(),
        sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('enrollment_id', sa.Integer(), sa.ForeignKey('enrollments.id'), nullable=False),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(length=11), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='CONFIRMED'),
        sa.Column('notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.String(length=40), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('teacher_id', 'day', 'time_slot', name='uq_class_bookings_teacher_day_slot'),
    )
    op.create_index('ix_class_bookings_teacher_id', 'class_bookings', ['teacher_id'])
    op.create_index('ix_class_bookings_enrollment_id', 'class_bookings', ['enrollment_id'])
    op.create_index('ix_class_bookings_student_day', 'class_bookings', ['student_id', 'day'])
    op.create_index('ix_class_bookings_status_day', 'class_bookings', ['status', 'day'])

    op.create_table(
        'video_calls',
        _id(),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('class_bookings.id'), nullable=False),
        sa.Column('room_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_video_calls_booking_id', 'video_calls', ['booking_id'])

    op.create_table(
        'teacher_attendances',
        _id(),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('class_bookings.id'), nullable=False),
        sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PRESENT'),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('class_id', 'teacher_id', name='uq_teacher_attendances_class_teacher'),
    )

    op.create_table(
        'class_attendances',
        _id(),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('class_bookings.id'), nullable=False),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('enrollment_id', sa.Integer(), sa.ForeignKey('enrollments.id'), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PRESENT'),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('class_id', 'student_id', name='uq_class_attendances_class_student'),
    )

    op.create_table(
        'teacher_incentives',
        _id(),
        sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('period_id', sa.Integer(), sa.ForeignKey('academic_periods.id'), nullable=True),
        sa.Column('bonus_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('reason', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_teacher_incentives_teacher_id', 'teacher_incentives', ['teacher_id'])

    op.create_table(
        'user_credit_balances',
        _id(),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('total_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('available_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('spent_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bonus_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_credit_balances_user_id', 'user_credit_balances', ['user_id'], unique=True)

    op.create_table(
        'credit_transactions',
        _id(),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('transaction_type', sa.String(length=30), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('balance_before', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('related_entity_type', sa.String(length=40), nullable=True),
        sa.Column('related_entity_id', sa.Integer(), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_credit_transactions_user_created', 'credit_transactions', ['user_id', 'created_at'])
    op.create_index('ix_credit_transactions_transaction_type', 'credit_transactions', ['transaction_type'])

    op.create_table(
        'credit_packages',
        _id(),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('credits', sa.Integer(), nullable=False),
        sa.Column('bonus_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_popular', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'plans',
        _id(),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=True),
        sa.Column('price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('includes_classes', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('classes_per_period', sa.Integer(), nullable=True),
        sa.Column('accepts_credits', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('credit_price', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        'coupons',
        _id(),
        sa.Column('code', sa.String(length=60), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('type', sa.String(length=20), nullable=False, server_default='PERCENTAGE'),
        sa.Column('value', sa.Float(), nullable=False, server_default='0'),
        sa.Column('min_amount', sa.Float(), nullable=True),
        sa.Column('max_discount', sa.Float(), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('user_limit', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('restricted_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('restricted_plan_id', sa.Integer(), sa.ForeignKey('plans.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_coupons_code', 'coupons', ['code'], unique=True)

    op.create_table(
        'invoices',
        _id(),
        sa.Column('invoice_number', sa.String(length=40), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='DRAFT'),
        sa.Column('subtotal', sa.Float(), nullable=False, server_default='0'),
        sa.Column('discount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('tax', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total', sa.Float(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=10), nullable=False, server_default='USD'),
        sa.Column('coupon_id', sa.Integer(), sa.ForeignKey('coupons.id'), nullable=True),
        sa.Column('payment_method', sa.String(length=30), nullable=False, server_default=''),
        sa.Column('external_order_id', sa.String(length=120), nullable=True),
        sa.Column('notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'], unique=True)
    op.create_index('ix_invoices_user_id', 'invoices', ['user_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_coupon_id', 'invoices', ['coupon_id'])
    op.create_index('ix_invoices_external_order_id', 'invoices', ['external_order_id'])

    op.create_table(
        'invoice_items',
        _id(),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id'), nullable=False),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('plans.id'), nullable=True),
        sa.Column('package_id', sa.Integer(), sa.ForeignKey('credit_packages.id'), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('total', sa.Float(), nullable=False),
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])

    op.create_table(
        'credit_package_purchases',
        _id(),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('package_id', sa.Integer(), sa.ForeignKey('credit_packages.id'), nullable=False),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id'), nullable=True),
        sa.Column('credits_received', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='CONFIRMED'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_credit_package_purchases_user_id', 'credit_package_purchases', ['user_id'])

    op.create_table(
        'rate_limit_states',
        _id(),
        sa.Column('scope_type', sa.String(length=20), nullable=False, server_default='user'),
        sa.Column('scope_key', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('action_name', sa.String(length=80), nullable=False, server_default=''),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('scope_type', 'scope_key', 'action_name', name='uq_rate_limit_scope_action'),
    )
    op.create_index('ix_rate_limit_states_window_start', 'rate_limit_states', ['window_start'])


def downgrade() -> None:
    for table in (
        'rate_limit_states',
        'credit_package_purchases',
        'invoice_items',
        'invoices',
        'coupons',
        'plans',
        'credit_packages',
        'credit_transactions',
        'user_credit_balances',
        'teacher_incentives',
        'class_attendances',
        'teacher_attendances',
        'video_calls',
        'class_bookings',
        'class_schedules',
        'enrollments',
        'academic_periods',
        'teacher_courses',
        'courses',
        'teacher_availability',
        'users',
        'teacher_ranks',
    ):
        op.drop_table(table)
