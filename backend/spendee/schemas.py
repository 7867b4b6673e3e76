from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .services.stats import parse_month


class CategoryType(str, Enum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class SavingsAccountType(str, Enum):
    SAVINGS = "SAVINGS"
    INVESTMENT = "INVESTMENT"


def _upper_enum_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload


class ActionResult(BaseModel):
    """Tagged outcome of every action: ``{success, data}`` or ``{success: false, error}``."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    status_code: int = Field(default=200, exclude=True)

    @classmethod
    def ok(cls, data: Any = None, status_code: int = 200) -> "ActionResult":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def fail(cls, error: str, status_code: int = 400) -> "ActionResult":
        return cls(success=False, error=error, status_code=status_code)


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: str


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(min_length=8, max_length=128)
    fullName: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        v = value.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("invalid email format")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=8, max_length=128)
    rememberMe: bool = False

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class AuthResponse(BaseModel):
    token: str
    userId: UUID
    email: str
    fullName: Optional[str] = None


class CategoryForm(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    type: CategoryType = CategoryType.EXPENSE
    icon: str = Field(default="Package", min_length=1, max_length=50)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> Any:
        return _upper_enum_value(value)


class CategorySummary(BaseModel):
    id: UUID
    name: str
    type: CategoryType
    icon: str


class CategoryResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    type: CategoryType
    icon: str
    createdAt: datetime


class CategoryWithStats(CategoryResponse):
    transactions: Optional[int] = None
    accounts: Optional[int] = None
    budgetName: Optional[str] = None
    budgetAmount: Optional[Decimal] = None
    spent: Optional[Decimal] = None
    remaining: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    averageGrowth: Decimal = Decimal("0")


class BudgetForm(BaseModel):
    name: str = Field(default="Monthly Budget", min_length=1, max_length=120)
    categoryId: UUID
    amount: Decimal = Field(ge=Decimal("0.01"), max_digits=14, decimal_places=2)
    description: Optional[str] = None
    month: Optional[str] = None

    @field_validator("month")
    @classmethod
    def validate_month(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parse_month(value)
        return value.strip()


class BudgetResponse(BaseModel):
    id: UUID
    name: str
    categoryId: UUID
    amount: Decimal
    description: Optional[str] = None
    month: str
    createdAt: datetime
    category: Optional[CategorySummary] = None


class BudgetWithStats(BudgetResponse):
    spent: Decimal
    remaining: Decimal
    progress: float
    status: str


class TransactionForm(BaseModel):
    description: str = Field(min_length=1, max_length=200)
    amount: Decimal = Field(gt=Decimal("0"), max_digits=14, decimal_places=2)
    date: date
    categoryId: UUID
    type: TransactionType
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> Any:
        return _upper_enum_value(value)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Description is required")
        return stripped


class TransactionResponse(BaseModel):
    id: UUID
    description: str
    amount: Decimal
    date: date
    type: TransactionType
    notes: Optional[str] = None
    categoryId: UUID
    createdAt: datetime
    updatedAt: datetime
    category: Optional[CategorySummary] = None


class SavingsCreateForm(BaseModel):
    accountName: str = Field(min_length=1, max_length=120)
    categoryId: UUID
    initialBalance: Decimal = Field(ge=Decimal("0"), max_digits=14, decimal_places=2)
    balance: Optional[Decimal] = Field(default=None, ge=Decimal("0"), max_digits=14, decimal_places=2)
    interestRate: Decimal = Field(ge=Decimal("0"), max_digits=8, decimal_places=3)
    growth: Decimal = Field(default=Decimal("0"), max_digits=9, decimal_places=3)
    accountType: SavingsAccountType = SavingsAccountType.SAVINGS
    institution: Optional[str] = None

    @field_validator("accountType", mode="before")
    @classmethod
    def normalize_account_type(cls, value: Any) -> Any:
        return _upper_enum_value(value)


class SavingsUpdateForm(BaseModel):
    accountName: str = Field(min_length=1, max_length=120)
    categoryId: UUID
    balance: Decimal = Field(ge=Decimal("0"), max_digits=14, decimal_places=2)
    interestRate: Decimal = Field(ge=Decimal("0"), max_digits=8, decimal_places=3)
    growth: Decimal = Field(default=Decimal("0"), max_digits=9, decimal_places=3)
    accountType: SavingsAccountType = SavingsAccountType.SAVINGS
    institution: Optional[str] = None

    @field_validator("accountType", mode="before")
    @classmethod
    def normalize_account_type(cls, value: Any) -> Any:
        return _upper_enum_value(value)


class SavingsResponse(BaseModel):
    id: UUID
    accountName: str
    categoryId: UUID
    balance: Decimal
    initialBalance: Decimal
    interestRate: Decimal
    growth: Decimal
    accountType: SavingsAccountType
    institution: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime
    category: Optional[CategorySummary] = None


class BulkDeleteRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1)


class CategoryTotal(BaseModel):
    categoryId: UUID
    name: str
    type: CategoryType
    total: Decimal


class MonthlySummary(BaseModel):
    month: str
    income: Decimal
    expense: Decimal
    net: Decimal
    categories: list[CategoryTotal] = Field(default_factory=list)


class CsvRowError(BaseModel):
    row: int
    field: str
    message: str


class CsvImportReport(BaseModel):
    validRows: int
    imported: int
    dryRun: bool
    errors: list[CsvRowError] = Field(default_factory=list)
