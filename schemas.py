import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from models import AlertType, BudgetPeriod, CategoryType

# Exact decimals internally, plain JSON numbers on the wire.
JSONDecimal = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]
AmountIn = Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]


class APIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# -- inputs -------------------------------------------------------------------


class RegisterIn(APIModel):
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6, max_length=128)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    full_name: str = Field(..., min_length=1, max_length=120)


class LoginIn(APIModel):
    username: str
    password: str


class CategoryIn(APIModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    color: str = Field(..., pattern=r"^#[0-9A-Fa-f]{6}$")


class TransactionIn(APIModel):
    amount: AmountIn
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    category_id: int
    is_income: bool = False


class TransactionUpdate(APIModel):
    amount: Optional[AmountIn] = None
    date: Optional[dt.date] = None
    description: Optional[str] = Field(None, min_length=1, max_length=200)
    category_id: Optional[int] = None
    is_income: Optional[bool] = None


class BudgetIn(APIModel):
    category_id: int
    amount: AmountIn
    period: BudgetPeriod = BudgetPeriod.monthly


class BudgetUpdate(APIModel):
    category_id: Optional[int] = None
    amount: Optional[AmountIn] = None
    period: Optional[BudgetPeriod] = None


class ForumTopicIn(APIModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)


class ForumReplyIn(APIModel):
    content: str = Field(..., min_length=1)


class DealIn(APIModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    company: str = Field(..., min_length=1, max_length=120)
    valid_until: Optional[date] = None


class UserUpdate(APIModel):
    email: Optional[str] = Field(
        None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255
    )
    full_name: Optional[str] = Field(None, min_length=1, max_length=120)
    is_admin: Optional[bool] = None


class SystemSettingsUpdate(APIModel):
    allow_registration: Optional[bool] = None
    maintenance_mode: Optional[bool] = None
    app_name: Optional[str] = Field(None, min_length=1, max_length=120)
    contact_email: Optional[str] = Field(None, max_length=255)
    backup_frequency: Optional[Literal["daily", "weekly", "monthly"]] = None


class CSVUploadIn(APIModel):
    csv_data: str


class CSVRow(BaseModel):
    amount: AmountIn
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    category_id: int
    is_income: bool


# -- outputs ------------------------------------------------------------------


class UserOut(APIModel):
    id: int
    username: str
    email: str
    full_name: str
    is_admin: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UserBrief(APIModel):
    id: int
    username: str
    full_name: str


class SessionOut(APIModel):
    user: UserOut
    csrf_token: str


class CategoryOut(APIModel):
    id: int
    name: str
    type: CategoryType
    color: str


class TransactionOut(APIModel):
    id: int
    user_id: int
    amount: JSONDecimal
    date: date
    description: str
    category_id: int
    is_income: bool


class TransactionWithCategoryOut(TransactionOut):
    category: Optional[CategoryOut] = None


class CSVUploadOut(APIModel):
    message: str
    created: int
    errors: list[str] = Field(default_factory=list)


class BudgetOut(APIModel):
    id: int
    user_id: int
    category_id: int
    amount: JSONDecimal
    period: BudgetPeriod


class BudgetWithSpentOut(BudgetOut):
    category: Optional[CategoryOut] = None
    spent: JSONDecimal
    percentage: JSONDecimal


class AlertOut(APIModel):
    id: int
    user_id: int
    title: str
    message: str
    type: AlertType
    read: bool
    created_at: Optional[datetime] = None


class FinancialSummaryOut(APIModel):
    balance: JSONDecimal
    monthly_income: JSONDecimal
    monthly_expenses: JSONDecimal
    next_income_date: Optional[date] = None
    next_income_amount: JSONDecimal
    budget_difference: JSONDecimal


class ForumTopicOut(APIModel):
    id: int
    user_id: int
    title: str
    content: str
    likes: int
    views: int
    created_at: Optional[datetime] = None


class TopicWithUserOut(ForumTopicOut):
    user: Optional[UserBrief] = None
    reply_count: int = 0


class ForumReplyOut(APIModel):
    id: int
    topic_id: int
    user_id: int
    content: str
    created_at: Optional[datetime] = None


class ReplyWithUserOut(ForumReplyOut):
    user: Optional[UserBrief] = None


class TopicDetailOut(ForumTopicOut):
    user: Optional[UserBrief] = None
    replies: list[ReplyWithUserOut] = Field(default_factory=list)


class DealOut(APIModel):
    id: int
    title: str
    description: str
    company: str
    valid_until: Optional[date] = None
    added_by: int
    created_at: Optional[datetime] = None


class DealWithUserOut(DealOut):
    user: Optional[UserBrief] = None


class SystemSettingsOut(APIModel):
    allow_registration: bool
    maintenance_mode: bool
    app_name: str
    contact_email: str
    backup_frequency: str
    last_backup: Optional[datetime] = None


class UserRecord(UserOut):
    password_hash: str


class BackupSnapshot(APIModel):
    timestamp: datetime
    users: list[UserRecord] = Field(default_factory=list)
    categories: list[CategoryOut] = Field(default_factory=list)
    transactions: list[TransactionOut] = Field(default_factory=list)
    budgets: list[BudgetOut] = Field(default_factory=list)
    alerts: list[AlertOut] = Field(default_factory=list)
    forum_topics: list[ForumTopicOut] = Field(default_factory=list)
    forum_replies: list[ForumReplyOut] = Field(default_factory=list)
    deals: list[DealOut] = Field(default_factory=list)


class UserReportOut(APIModel):
    total_users: int
    active_users: int
    new_users_this_month: int


class MonthlyTotalsOut(APIModel):
    income: JSONDecimal
    expenses: JSONDecimal
    count: int
