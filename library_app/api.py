import logging
import secrets
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, Security
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from library_app import database
from library_app.config import settings
from library_app.database import get_db_connection
from library_app.errors import Forbidden, LendingError, NotFound, Unauthorized, ValidationError
from library_app.fines import compute_fine, days_overdue
from library_app.guards import require_role, require_self_or_admin
from library_app.ledger import LoanLedger
from library_app.models import LoanStatus, Role, User
from library_app.schemas import (
    AdminStats,
    AvailabilityModel,
    BookCreate,
    BookModel,
    BookUpdate,
    FinePreview,
    LoanModel,
    LoanRequestInput,
    LoanStatusUpdate,
    LoanView,
    LoginInput,
    LoginResult,
    ProfileUpdate,
    RegisterInput,
    ReportModel,
    ReturnInput,
    UserCreate,
    UserModel,
    UserStats,
    UserUpdate,
    WishlistInput,
    WishlistItem,
)
from library_app.services.catalog import CatalogStore
from library_app.services.identity import IdentityStore
from library_app.services.reports import ReportService
from library_app.services.wishlist import WishlistStore
from library_app.tokens import create_access_token, verify_access_token

logger = logging.getLogger(__name__)

# Identity used by automation holding the API key
SERVICE_IDENTITY = User(name="service", email="service@localhost", role=Role.ADMIN)

router = APIRouter()


# --- Dependencies ---
def get_ledger(request: Request) -> LoanLedger:
    return request.app.state.ledger


def get_catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


def get_identity_store(request: Request) -> IdentityStore:
    return request.app.state.identity


def get_wishlist(request: Request) -> WishlistStore:
    return request.app.state.wishlist


def get_reports(request: Request) -> ReportService:
    return request.app.state.reports


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


def get_identity(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Optional[User]:
    """Resolve the caller from the API key or a bearer token issued by ``/auth/login``."""
    if api_key is not None:
        if settings.api_key and secrets.compare_digest(api_key, settings.api_key):
            return SERVICE_IDENTITY
        raise Forbidden("Could not validate credentials")
    if credentials is None:
        return None
    claims = verify_access_token(credentials.credentials)
    try:
        return request.app.state.identity.get_user(int(claims["sub"]))
    except NotFound as exc:
        raise Unauthorized("Unknown user") from exc


def require_user(identity: Optional[User] = Depends(get_identity)) -> User:
    return require_role(identity, Role.USER)


def require_admin(identity: Optional[User] = Depends(get_identity)) -> User:
    return require_role(identity, Role.ADMIN)


def _own_id(identity: User) -> int:
    if identity.id is None:
        raise ValidationError("This action needs a user account; the service key has none")
    return identity.id


# --- Health ---
@router.get("/health")
def health(request: Request):
    """Lightweight health endpoint with a quick database ping."""
    db_ok = True
    try:
        conn = get_db_connection(request.app.state.db_file)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception as exc:
        logger.error(f"Health check database ping failed: {exc}")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Auth ---
@router.post("/auth/register", response_model=UserModel, status_code=201)
def register(payload: RegisterInput, identity_store: IdentityStore = Depends(get_identity_store)):
    user = identity_store.register(payload.model_dump())
    return UserModel(**user.to_dict())


@router.post("/auth/login", response_model=LoginResult)
def login(payload: LoginInput, identity_store: IdentityStore = Depends(get_identity_store)):
    """Check credentials and issue a bearer token for the other routes."""
    user = identity_store.authenticate(payload.email, payload.password)
    logger.info(f"User {user.id} signed in")
    return LoginResult(access_token=create_access_token(user), user=UserModel(**user.to_dict()))


# --- Books ---
@router.get("/books", response_model=List[BookModel])
def list_books(
    search: Optional[str] = Query(None, description="Matches title, author or publisher"),
    category: Optional[str] = Query(None),
    status: Optional[str] = Query(None, pattern="^(active|inactive)$"),
    catalog: CatalogStore = Depends(get_catalog),
):
    return [BookModel(**b.to_dict()) for b in catalog.list_books(search=search, category=category, status=status)]


@router.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int, catalog: CatalogStore = Depends(get_catalog)):
    return BookModel(**catalog.get_book(book_id).to_dict())


@router.get("/books/{book_id}/availability", response_model=AvailabilityModel)
def get_availability(book_id: int, catalog: CatalogStore = Depends(get_catalog)):
    return AvailabilityModel(**catalog.get_availability(book_id))


@router.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(require_admin)])
def add_book(payload: BookCreate, catalog: CatalogStore = Depends(get_catalog)):
    return BookModel(**catalog.add_book(payload.model_dump()).to_dict())


@router.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(require_admin)])
def update_book(book_id: int, payload: BookUpdate, catalog: CatalogStore = Depends(get_catalog)):
    return BookModel(**catalog.update_book(book_id, payload.model_dump(exclude_unset=True)).to_dict())


@router.delete("/books/{book_id}", dependencies=[Depends(require_admin)])
def delete_book(book_id: int, catalog: CatalogStore = Depends(get_catalog)):
    catalog.remove_book(book_id)
    return {"message": "Book deleted successfully"}


@router.get("/categories", response_model=List[str])
def list_categories(catalog: CatalogStore = Depends(get_catalog)):
    return catalog.list_categories()


# --- Users ---
@router.get("/users", response_model=List[UserModel], dependencies=[Depends(require_admin)])
def list_users(
    role: Optional[Role] = Query(None),
    identity_store: IdentityStore = Depends(get_identity_store),
):
    return [UserModel(**u.to_dict()) for u in identity_store.list_users(role)]


@router.post("/users", response_model=UserModel, status_code=201, dependencies=[Depends(require_admin)])
def create_user(payload: UserCreate, identity_store: IdentityStore = Depends(get_identity_store)):
    return UserModel(**identity_store.create_user(payload.model_dump()).to_dict())


@router.get("/users/{user_id}", response_model=UserModel, dependencies=[Depends(require_admin)])
def get_user(user_id: int, identity_store: IdentityStore = Depends(get_identity_store)):
    return UserModel(**identity_store.get_user(user_id).to_dict())


@router.put("/users/{user_id}", response_model=UserModel, dependencies=[Depends(require_admin)])
def update_user(user_id: int, payload: UserUpdate, identity_store: IdentityStore = Depends(get_identity_store)):
    return UserModel(**identity_store.update_user(user_id, payload.model_dump(exclude_unset=True)).to_dict())


@router.delete("/users/{user_id}", dependencies=[Depends(require_admin)])
def delete_user(user_id: int, identity_store: IdentityStore = Depends(get_identity_store)):
    identity_store.delete_user(user_id)
    return {"message": "User deleted successfully"}


@router.get("/profile", response_model=UserModel)
def get_profile(identity: User = Depends(require_user)):
    _own_id(identity)
    return UserModel(**identity.to_dict())


@router.put("/profile", response_model=UserModel)
def update_profile(
    payload: ProfileUpdate,
    identity: User = Depends(require_user),
    identity_store: IdentityStore = Depends(get_identity_store),
):
    user = identity_store.update_profile(_own_id(identity), payload.model_dump(exclude_unset=True))
    return UserModel(**user.to_dict())


# --- Loans ---
@router.get("/loans", response_model=List[LoanView])
def list_loans(
    user: Optional[str] = Query(None, description="Email or id; admins only"),
    status: Optional[LoanStatus] = Query(None),
    identity: User = Depends(require_user),
    ledger: LoanLedger = Depends(get_ledger),
):
    """List loans. Members only ever see their own."""
    if not identity.is_admin:
        if user is not None and ledger.identity.resolve_user(user) != identity.id:
            raise Forbidden("You can only list your own loans")
        user = identity.id
    return ledger.list_loans(user=user, status=status)


@router.post("/loans", response_model=LoanModel, status_code=201)
def request_loan(
    payload: LoanRequestInput,
    identity: User = Depends(require_user),
    ledger: LoanLedger = Depends(get_ledger),
):
    """Ask to borrow a book; the loan waits in ``pending`` for an admin."""
    if payload.user is None:
        borrower = _own_id(identity)
    elif identity.is_admin:
        borrower = payload.user
    else:
        borrower = ledger.identity.resolve_user(payload.user)
        if borrower != identity.id:
            raise Forbidden("You can only request loans for yourself")
    loan = ledger.request_loan(borrower, payload.book_id, payload.loan_date, payload.due_date)
    return LoanModel(**loan.to_dict())


@router.get("/loans/{loan_id}", response_model=LoanModel)
def get_loan(loan_id: int, identity: User = Depends(require_user), ledger: LoanLedger = Depends(get_ledger)):
    loan = ledger.get_loan(loan_id)
    require_self_or_admin(identity, loan.user_id)
    return LoanModel(**loan.to_dict())


@router.post("/loans/{loan_id}/approve", response_model=LoanModel, dependencies=[Depends(require_admin)])
def approve_loan(loan_id: int, ledger: LoanLedger = Depends(get_ledger)):
    return LoanModel(**ledger.approve(loan_id).to_dict())


@router.post("/loans/{loan_id}/reject", response_model=LoanModel, dependencies=[Depends(require_admin)])
def reject_loan(
    loan_id: int,
    reason: Optional[str] = Body(None, embed=True),
    ledger: LoanLedger = Depends(get_ledger),
):
    return LoanModel(**ledger.reject(loan_id, reason).to_dict())


@router.post("/loans/{loan_id}/return", response_model=LoanModel, dependencies=[Depends(require_admin)])
def return_loan(
    loan_id: int,
    payload: Optional[ReturnInput] = Body(None),
    ledger: LoanLedger = Depends(get_ledger),
):
    payload = payload or ReturnInput()
    return LoanModel(**ledger.return_loan(loan_id, payload.return_date, payload.fine).to_dict())


@router.put("/loans/{loan_id}", response_model=LoanModel, dependencies=[Depends(require_admin)])
def update_loan_status(loan_id: int, payload: LoanStatusUpdate, ledger: LoanLedger = Depends(get_ledger)):
    loan = ledger.update_status(
        loan_id,
        payload.status,
        return_date=payload.return_date,
        fine=payload.fine,
        rejection_reason=payload.rejection_reason,
    )
    return LoanModel(**loan.to_dict())


@router.get("/fines/calculate", response_model=FinePreview)
def calculate_fine(
    request: Request,
    due_date: date = Query(...),
    return_date: Optional[date] = Query(None, description="Defaults to today"),
):
    """Preview the fine for a return; nothing is stored."""
    return_date = return_date or date.today()
    unit_rate = request.app.state.ledger.unit_rate
    return FinePreview(
        due_date=due_date,
        return_date=return_date,
        days_overdue=days_overdue(due_date, return_date),
        fine=compute_fine(due_date, return_date, unit_rate),
        unit_rate=unit_rate,
    )


# --- Wishlist ---
@router.get("/wishlist", response_model=List[WishlistItem])
def get_wishlist_items(identity: User = Depends(require_user), wishlist: WishlistStore = Depends(get_wishlist)):
    return wishlist.list(_own_id(identity))


@router.post("/wishlist", status_code=201)
def add_to_wishlist(
    payload: WishlistInput,
    identity: User = Depends(require_user),
    wishlist: WishlistStore = Depends(get_wishlist),
):
    entry = wishlist.add(_own_id(identity), payload.book_id)
    return {"message": "Book added to wishlist", **entry}


@router.delete("/wishlist/{book_id}")
def remove_from_wishlist(
    book_id: int,
    identity: User = Depends(require_user),
    wishlist: WishlistStore = Depends(get_wishlist),
):
    wishlist.remove(_own_id(identity), book_id)
    return {"message": "Book removed from wishlist"}


# --- Stats & reports ---
@router.get("/stats")
def get_stats(identity: User = Depends(require_user), reports: ReportService = Depends(get_reports)) -> Dict[str, Any]:
    """Dashboard numbers: library-wide for admins, personal for members."""
    if identity.is_admin:
        return AdminStats(**reports.admin_stats()).model_dump()
    return UserStats(**reports.user_stats(identity.id)).model_dump()


@router.get("/reports", response_model=ReportModel, dependencies=[Depends(require_admin)])
def get_report(reports: ReportService = Depends(get_reports)):
    return ReportModel(**reports.report())


# --- Application factory ---
def create_app(db_file: Optional[str] = None) -> FastAPI:
    """Build the API bound to ``db_file`` (defaults to ``database.DATABASE_FILE``)."""
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    db_file = db_file or database.DATABASE_FILE

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{settings.app_name} {settings.app_version} starting with database {db_file}")
        yield
        logger.info(f"{settings.app_name} shutting down")

    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)

    identity = IdentityStore(db_file)
    catalog = CatalogStore(db_file)
    app.state.db_file = db_file
    app.state.identity = identity
    app.state.catalog = catalog
    app.state.ledger = LoanLedger(db_file, catalog=catalog, identity=identity)
    app.state.wishlist = WishlistStore(db_file, identity=identity, catalog=catalog)
    app.state.reports = ReportService(db_file, identity=identity)

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @app.exception_handler(LendingError)
    async def lending_error_handler(request: Request, exc: LendingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.kind}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"error": ValidationError.kind, "detail": jsonable_encoder(exc.errors())},
        )

    app.include_router(router)
    return app
