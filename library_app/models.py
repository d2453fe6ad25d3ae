from __future__ import annotations

from datetime import date
from enum import Enum


class LoanStatus(str, Enum):
    """Loan lifecycle states."""
    PENDING = "pending"
    APPROVED = "approved"
    RETURNED = "returned"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (LoanStatus.RETURNED, LoanStatus.REJECTED)


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


def _to_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    # SQLite hands back ISO strings; timestamps keep only their date part
    return date.fromisoformat(str(value)[:10])


class Book:
    """A single title in the catalog, with its lendable copy counter."""

    def __init__(self, title: str, author: str, id: int | None = None, isbn: str | None = None,
                 publisher: str | None = None, published_year: int | None = None,
                 category: str | None = None, pages: int | None = None, language: str | None = None,
                 description: str | None = None, cover_image: str | None = None,
                 quantity: int = 1, available: int | None = None, status: str = "active",
                 created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn
        self.publisher = publisher
        self.published_year = published_year
        self.category = category
        self.pages = pages
        self.language = language
        self.description = description
        self.cover_image = cover_image
        self.quantity = quantity
        self.available = quantity if available is None else available
        self.status = status
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available}/{self.quantity} available)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "publisher": self.publisher,
            "published_year": self.published_year,
            "category": self.category,
            "pages": self.pages,
            "language": self.language,
            "description": self.description,
            "cover_image": self.cover_image,
            "quantity": self.quantity,
            "available": self.available,
            "status": self.status,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data.get("isbn"),
            publisher=data.get("publisher"),
            published_year=data.get("published_year"),
            category=data.get("category"),
            pages=data.get("pages"),
            language=data.get("language"),
            description=data.get("description"),
            cover_image=data.get("cover_image"),
            quantity=data.get("quantity", 1),
            available=data.get("available"),
            status=data.get("status") or "active",
            created_at=data.get("created_at"),
        )


class User:
    """A library member or administrator. The password hash never leaves the store."""

    def __init__(self, name: str, email: str, id: int | None = None, role: Role | str = Role.USER,
                 profile_image: str | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip().lower()
        self.role = Role(role)
        self.profile_image = profile_image
        self.created_at = created_at

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} <{self.email}> [{self.role.value}]"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "profile_image": self.profile_image,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data.get("id"),
            name=data["name"],
            email=data["email"],
            role=data.get("role") or Role.USER,
            profile_image=data.get("profile_image"),
            created_at=data.get("created_at"),
        )


class Loan:
    """One user borrowing one copy of one book."""

    def __init__(self, user_id: int, book_id: int, loan_date: date, due_date: date,
                 id: int | None = None, return_date: date | None = None, fine: int = 0,
                 status: LoanStatus | str = LoanStatus.PENDING, rejection_reason: str | None = None,
                 created_at: str | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.loan_date = loan_date
        self.due_date = due_date
        self.return_date = return_date
        self.fine = fine
        self.status = LoanStatus(status)
        self.rejection_reason = rejection_reason
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"Loan #{self.id} book={self.book_id} user={self.user_id} [{self.status.value}]"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "loan_date": self.loan_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "fine": self.fine,
            "status": self.status.value,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            id=data.get("id"),
            user_id=data["user_id"],
            book_id=data["book_id"],
            loan_date=_to_date(data["loan_date"]),
            due_date=_to_date(data["due_date"]),
            return_date=_to_date(data.get("return_date")),
            fine=data.get("fine") or 0,
            status=data.get("status") or LoanStatus.PENDING,
            rejection_reason=data.get("rejection_reason"),
            created_at=data.get("created_at"),
        )
