import pytest

from library_app.errors import Forbidden, Unauthorized
from library_app.guards import check_role, require_role, require_self_or_admin
from library_app.models import Role, User

ADMIN = User(id=1, name="Admin", email="admin@perpus.id", role=Role.ADMIN)
MEMBER = User(id=2, name="Budi", email="budi@perpus.id", role=Role.USER)


def test_check_role():
    assert check_role(ADMIN, Role.ADMIN)
    assert check_role(ADMIN, "user")
    assert check_role(MEMBER, Role.USER)
    assert not check_role(MEMBER, Role.ADMIN)
    assert not check_role(None, Role.USER)


def test_require_role():
    assert require_role(MEMBER, Role.USER) is MEMBER
    with pytest.raises(Unauthorized):
        require_role(None, Role.USER)
    with pytest.raises(Forbidden):
        require_role(MEMBER, Role.ADMIN)


def test_require_self_or_admin():
    assert require_self_or_admin(MEMBER, 2) is MEMBER
    assert require_self_or_admin(ADMIN, 2) is ADMIN
    with pytest.raises(Forbidden):
        require_self_or_admin(MEMBER, 1)
    with pytest.raises(Unauthorized):
        require_self_or_admin(None, 2)
