"""Role checks.

Each guard takes an already-resolved identity and the role an action needs,
and either allows or denies. Nothing here reads request or session state;
the API layer resolves the identity and passes it in.
"""
from typing import Optional, Union

from library_app.errors import Forbidden, Unauthorized
from library_app.models import Role, User


def check_role(identity: Optional[User], required: Union[Role, str]) -> bool:
    """True when ``identity`` may act with ``required`` role. Admins may act as anyone."""
    if identity is None:
        return False
    required = Role(required)
    return identity.role is Role.ADMIN or identity.role is required


def require_role(identity: Optional[User], required: Union[Role, str]) -> User:
    if identity is None:
        raise Unauthorized("Sign in required")
    if not check_role(identity, required):
        raise Forbidden(f"{Role(required).value} role required")
    return identity


def require_self_or_admin(identity: Optional[User], owner_id: int) -> User:
    """Allow the owner of a record, or any admin."""
    identity = require_role(identity, Role.USER)
    if identity.is_admin or identity.id == owner_id:
        return identity
    raise Forbidden("You can only access your own records")
