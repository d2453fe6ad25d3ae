"""Users, roles and credentials.

Passwords are stored as salted PBKDF2-SHA256 digests in the form
``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``.
"""
import hashlib
import hmac
import logging
import secrets
import sqlite3
from typing import Any, Dict, List, Optional, Union

from library_app.database import get_db_connection, transaction
from library_app.errors import Conflict, NotFound, Unauthorized, ValidationError
from library_app.models import Role, User
from library_app.schemas import ProfileUpdate, RegisterInput, UserCreate, UserUpdate, validate

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100000
USER_COLUMNS = "id, name, email, role, profile_image, created_at"


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


class IdentityStore:
    """Users table. The ledger only needs ``resolve_user``; the rest backs user admin."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def resolve_user(self, identifier: Union[int, str], conn: Optional[sqlite3.Connection] = None) -> int:
        """Map an email address or numeric id to a user id."""
        if identifier is None or (isinstance(identifier, str) and not identifier.strip()):
            raise NotFound("User not found")
        own = conn is None
        conn = conn or get_db_connection(self.db_file)
        try:
            if isinstance(identifier, int) or str(identifier).strip().isdigit():
                row = conn.execute("SELECT id FROM users WHERE id = ?", (int(identifier),)).fetchone()
            else:
                row = conn.execute(
                    "SELECT id FROM users WHERE email = ?", (identifier.strip().lower(),)
                ).fetchone()
        finally:
            if own:
                conn.close()
        if row is None:
            raise NotFound(f"User {identifier} not found")
        return row["id"]

    # ------------------------- Lookups ------------------------- #
    def get_user(self, user_id: int) -> User:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound(f"User {user_id} not found")
        return User.from_dict(dict(row))

    def get_user_by_email(self, email: str) -> Optional[User]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                f"SELECT {USER_COLUMNS} FROM users WHERE email = ?", ((email or "").strip().lower(),)
            ).fetchone()
        finally:
            conn.close()
        return User.from_dict(dict(row)) if row else None

    def list_users(self, role: Optional[Role] = None) -> List[User]:
        sql = f"SELECT {USER_COLUMNS} FROM users"
        params: List[Any] = []
        if role:
            sql += " WHERE role = ?"
            params.append(Role(role).value)
        sql += " ORDER BY created_at DESC, id DESC"
        conn = get_db_connection(self.db_file)
        try:
            return [User.from_dict(dict(row)) for row in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    # ------------------------- Writes ------------------------- #
    def register(self, data: Dict[str, Any]) -> User:
        """Self-service sign-up; always creates a plain user."""
        payload = validate(RegisterInput, data)
        return self._insert(payload.name, payload.email, payload.password, Role.USER, None)

    def create_user(self, data: Dict[str, Any]) -> User:
        """Admin-side creation with an explicit role."""
        payload = validate(UserCreate, data)
        return self._insert(payload.name, payload.email, payload.password, payload.role, payload.profile_image)

    def _insert(self, name: str, email: str, password: str, role: Role, profile_image: Optional[str]) -> User:
        email = email.strip().lower()
        with transaction(db_file=self.db_file) as conn:
            if conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone():
                raise Conflict("Email already exists")
            cursor = conn.execute(
                "INSERT INTO users (name, email, password_hash, role, profile_image) VALUES (?, ?, ?, ?, ?)",
                (name.strip(), email, hash_password(password), Role(role).value, profile_image),
            )
            user_id = cursor.lastrowid
        logger.info(f"Created {Role(role).value} user {user_id} <{email}>")
        return self.get_user(user_id)

    def update_user(self, user_id: int, data: Dict[str, Any]) -> User:
        payload = validate(UserUpdate, data)
        return self._update(user_id, payload.model_dump(exclude_unset=True))

    def update_profile(self, user_id: int, data: Dict[str, Any]) -> User:
        """Self-service update; role and email are not editable here."""
        payload = validate(ProfileUpdate, data)
        return self._update(user_id, payload.model_dump(exclude_unset=True))

    def _update(self, user_id: int, changes: Dict[str, Any]) -> User:
        password = changes.pop("password", None)
        if "name" in changes:
            if not (changes["name"] or "").strip():
                raise ValidationError("name: must not be blank")
            changes["name"] = changes["name"].strip()
        if "email" in changes:
            if not changes["email"]:
                raise ValidationError("email: must not be blank")
            changes["email"] = changes["email"].strip().lower()
        if "role" in changes:
            if changes["role"] is None:
                raise ValidationError("role: must not be blank")
            changes["role"] = Role(changes["role"]).value
        if password:
            changes["password_hash"] = hash_password(password)
        if not changes:
            raise ValidationError("Nothing to update.")

        with transaction(db_file=self.db_file) as conn:
            if not conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone():
                raise NotFound(f"User {user_id} not found")
            if "email" in changes and conn.execute(
                "SELECT 1 FROM users WHERE email = ? AND id != ?", (changes["email"], user_id)
            ).fetchone():
                raise Conflict("Email already exists")
            assignments = ", ".join(f"{column} = ?" for column in changes)
            conn.execute(f"UPDATE users SET {assignments} WHERE id = ?", (*changes.values(), user_id))
        logger.info(f"Updated user {user_id}: {', '.join(c for c in changes if c != 'password_hash')}")
        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> None:
        with transaction(db_file=self.db_file) as conn:
            if not conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone():
                raise NotFound(f"User {user_id} not found")
            active = conn.execute(
                "SELECT COUNT(*) FROM loans WHERE user_id = ? AND status IN ('pending', 'approved')",
                (user_id,),
            ).fetchone()[0]
            if active:
                raise Conflict("Cannot delete user with active loans")
            if conn.execute("SELECT COUNT(*) FROM loans WHERE user_id = ?", (user_id,)).fetchone()[0]:
                raise Conflict("Cannot delete user with loan history")
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        logger.info(f"Deleted user {user_id}")

    # ------------------------- Credentials ------------------------- #
    def authenticate(self, email: str, password: str) -> User:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                f"SELECT {USER_COLUMNS}, password_hash FROM users WHERE email = ?",
                ((email or "").strip().lower(),),
            ).fetchone()
        finally:
            conn.close()
        if row is None or not verify_password(password or "", row["password_hash"]):
            logger.warning(f"Failed login for {email}")
            raise Unauthorized("Invalid email or password")
        return User.from_dict(dict(row))
