"""Pydantic models at the edge of the service.

Input models are strict: integers must arrive as integers, unknown fields are
refused and blank optional strings are normalised to ``None`` here rather than
in the handlers. ``validate`` turns pydantic failures into the service's own
``ValidationError`` so callers of the stores see a single error family.
"""
from datetime import date
from typing import Annotated, Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, StrictInt, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from library_app.errors import ValidationError
from library_app.models import LoanStatus, Role

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """Validate ``data`` against ``model`` or raise ``ValidationError``."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "input"
        raise ValidationError(f"{field}: {first.get('msg', 'invalid value')}") from exc


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# Blank strings from forms mean "not provided"
OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


class StrictInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


# --- Loans ---
class LoanRequestInput(StrictInput):
    book_id: StrictInt = Field(gt=0)
    user: Optional[Union[StrictInt, str]] = Field(default=None, description="Email or id; admins only, defaults to the caller")
    loan_date: Optional[date] = None
    due_date: Optional[date] = None

    @model_validator(mode="after")
    def _due_after_loan(self):
        if self.loan_date and self.due_date and self.due_date < self.loan_date:
            raise ValueError("due_date cannot be before loan_date")
        return self


class RejectInput(StrictInput):
    reason: str

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("a rejection reason is required")
        return value


class ReturnInput(StrictInput):
    return_date: Optional[date] = None
    fine: Optional[StrictInt] = Field(default=None, ge=0)


class LoanStatusUpdate(StrictInput):
    """Single-form status update kept for clients of the old admin screen."""
    status: LoanStatus
    return_date: Optional[date] = None
    fine: Optional[StrictInt] = Field(default=None, ge=0)
    rejection_reason: Optional[str] = None


class LoanModel(BaseModel):
    id: int
    user_id: int
    book_id: int
    loan_date: date
    due_date: date
    return_date: Optional[date] = None
    fine: int
    status: LoanStatus
    rejection_reason: Optional[str] = None
    created_at: Optional[str] = None


class LoanView(LoanModel):
    """Loan joined with display fields from books and users."""
    title: str
    author: str
    cover_image: Optional[str] = None
    user_name: str
    user_email: str
    is_overdue: bool = False
    projected_fine: int = 0


class FinePreview(BaseModel):
    due_date: date
    return_date: date
    days_overdue: int
    fine: int
    unit_rate: int


# --- Books ---
class BookCreate(StrictInput):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    isbn: OptionalText = None
    publisher: OptionalText = None
    published_year: Optional[StrictInt] = Field(default=None, ge=0, le=2100)
    category: OptionalText = None
    pages: Optional[StrictInt] = Field(default=None, ge=1)
    language: OptionalText = None
    description: OptionalText = None
    cover_image: OptionalText = None
    quantity: StrictInt = Field(default=1, ge=1)
    status: str = Field(default="active", pattern="^(active|inactive)$")

    @field_validator("title", "author")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class BookUpdate(StrictInput):
    title: Optional[str] = Field(default=None, min_length=1)
    author: Optional[str] = Field(default=None, min_length=1)
    isbn: OptionalText = None
    publisher: OptionalText = None
    published_year: Optional[StrictInt] = Field(default=None, ge=0, le=2100)
    category: OptionalText = None
    pages: Optional[StrictInt] = Field(default=None, ge=1)
    language: OptionalText = None
    description: OptionalText = None
    cover_image: OptionalText = None
    quantity: Optional[StrictInt] = Field(default=None, ge=1)
    status: Optional[str] = Field(default=None, pattern="^(active|inactive)$")


class BookModel(BaseModel):
    id: int
    title: str
    author: str
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    published_year: Optional[int] = None
    category: Optional[str] = None
    pages: Optional[int] = None
    language: Optional[str] = None
    description: Optional[str] = None
    cover_image: Optional[str] = None
    quantity: int
    available: int
    status: str
    created_at: Optional[str] = None


class AvailabilityModel(BaseModel):
    available: int
    quantity: int
    status: str


# --- Users ---
class RegisterInput(StrictInput):
    name: str = Field(min_length=3)
    email: EmailStr
    password: str = Field(min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("passwords do not match")
        return self


class LoginInput(StrictInput):
    email: EmailStr
    password: str = Field(min_length=1)


class UserCreate(StrictInput):
    name: str = Field(min_length=3)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role = Role.USER
    profile_image: OptionalText = None


class UserUpdate(StrictInput):
    name: Optional[str] = Field(default=None, min_length=3)
    email: Optional[EmailStr] = None
    password: OptionalText = None
    role: Optional[Role] = None
    profile_image: OptionalText = None

    @field_validator("password")
    @classmethod
    def _password_length(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) < 6:
            raise ValueError("password must be at least 6 characters")
        return value


class ProfileUpdate(StrictInput):
    name: Optional[str] = Field(default=None, min_length=3)
    password: OptionalText = None
    profile_image: OptionalText = None


class UserModel(BaseModel):
    id: int
    name: str
    email: str
    role: Role
    profile_image: Optional[str] = None
    created_at: Optional[str] = None


class LoginResult(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserModel


# --- Wishlist ---
class WishlistInput(StrictInput):
    book_id: StrictInt = Field(gt=0)


class WishlistItem(BaseModel):
    id: int
    user_id: int
    book_id: int
    title: str
    author: str
    cover_image: Optional[str] = None
    available: int
    created_at: Optional[str] = None


# --- Reports ---
class AdminStats(BaseModel):
    total_books: int
    total_users: int
    active_loans: int
    pending_loans: int


class UserStats(BaseModel):
    active_loans: int
    total_loans: int
    wishlist_count: int
    total_fines: int


class TopBook(BaseModel):
    id: int
    title: str
    author: str
    borrow_count: int


class TopUser(BaseModel):
    id: int
    name: str
    email: str
    loan_count: int


class MonthlyStat(BaseModel):
    month: str
    total_loans: int
    approved: int
    returned: int
    rejected: int


class ReportModel(BaseModel):
    top_books: List[TopBook]
    top_users: List[TopUser]
    monthly_stats: List[MonthlyStat]
    total_fines: int
    overdue_count: int
