from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


class ScheduleSlotPayload(BaseModel):
    teacher_id: int = Field(gt=0)
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str


class PeriodCreateRequest(BaseModel):
    name: str
    start_date: date
    end_date: date
    is_special_week: bool = False


class PeriodGenerateRequest(BaseModel):
    year: int = Field(ge=2000, le=2100)


class EnrollmentCreateRequest(BaseModel):
    student_id: int
    course_id: int
    academic_period_id: int
    schedule: list[ScheduleSlotPayload] = Field(default_factory=list)


class ScheduleReplaceRequest(BaseModel):
    schedule: list[ScheduleSlotPayload]


class AttendanceMarkRequest(BaseModel):
    booking_id: int
    user_type: Literal['teacher', 'student']


class CreditAdjustRequest(BaseModel):
    user_id: int
    amount: int
    transaction_type: Literal['ADMIN_ADJUSTMENT', 'BONUS', 'REWARD', 'REFUND', 'EXPIRED'] = 'ADMIN_ADJUSTMENT'
    description: str = ''


class CreditPackageCreateRequest(BaseModel):
    name: str
    credits: int = Field(gt=0)
    bonus_credits: int = Field(default=0, ge=0)
    price: float = Field(ge=0)
    description: str = ''
    is_popular: bool = False
    sort_order: int = 0


class CreditPackageUpdateRequest(BaseModel):
    name: str | None = None
    credits: int | None = Field(default=None, gt=0)
    bonus_credits: int | None = Field(default=None, ge=0)
    price: float | None = Field(default=None, ge=0)
    description: str | None = None
    is_active: bool | None = None
    is_popular: bool | None = None
    sort_order: int | None = None


class PlanCreditPurchaseRequest(BaseModel):
    plan_id: int
    schedule: list[ScheduleSlotPayload] = Field(default_factory=list)


class CouponCreateRequest(BaseModel):
    code: str
    name: str = ''
    description: str = ''
    type: Literal['PERCENTAGE', 'FIXED_AMOUNT'] = 'PERCENTAGE'
    value: float = Field(gt=0)
    min_amount: float | None = None
    max_discount: float | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    user_limit: int | None = Field(default=None, ge=1)
    is_active: bool = True
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    restricted_user_id: int | None = None
    restricted_plan_id: int | None = None


class CouponUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    type: Literal['PERCENTAGE', 'FIXED_AMOUNT'] | None = None
    value: float | None = Field(default=None, gt=0)
    min_amount: float | None = None
    max_discount: float | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    user_limit: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
    starts_at: datetime | None = None
    expires_at: datetime | None = None


class CouponValidateRequest(BaseModel):
    code: str
    plan_id: int | None = None
    subtotal: float | None = Field(default=None, ge=0)


class CheckoutSessionRequest(BaseModel):
    provider: Literal['niubiz', 'paypal']
    amount: float = Field(gt=0)
    order_id: str


class CheckoutItemPayload(BaseModel):
    kind: Literal['plan', 'package']
    item_id: int
    quantity: int = Field(default=1, ge=1)
    schedule: list[ScheduleSlotPayload] = Field(default_factory=list)


class CustomerInfo(BaseModel):
    email: str
    first_name: str = ''
    last_name: str = ''


class CheckoutAuthorizeRequest(BaseModel):
    provider: Literal['niubiz', 'paypal']
    transaction_token: str
    order_id: str
    items: list[CheckoutItemPayload]
    coupon_code: str | None = None
    register_card: bool = False
    customer: CustomerInfo | None = None
