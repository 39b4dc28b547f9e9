import enum
from collections import namedtuple
from functools import wraps

from flask import g, session
from flask_login import LoginManager, current_user, login_user, logout_user

from errors import AuthError, ForbiddenError
from models import db, RoleEnum, User

login_manager = LoginManager()

Identity = namedtuple("Identity", "user_id role is_verified")


class Access(str, enum.Enum):
    public = "public"
    authenticated = "authenticated"
    admin = "admin"


@login_manager.user_loader
def load_user(user_id):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    raise AuthError()


def _session_user():
    if not current_user or not current_user.is_authenticated:
        return None
    return current_user._get_current_object()


def session_gate(access=Access.authenticated):
    """
    Single guard in front of every route.

    Resolves the session user (reloaded from the database on every
    request), rejects missing sessions, suspended accounts and missing
    roles, and exposes ``g.identity`` / ``g.user`` to the handler.
    """
    access = Access(access)

    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            user = _session_user()

            if user is None:
                if access != Access.public:
                    raise AuthError()
                g.user = None
                g.identity = None
                return f(*args, **kwargs)

            if user.is_suspended:
                if access == Access.public:
                    g.user = None
                    g.identity = None
                    return f(*args, **kwargs)
                raise ForbiddenError("Account suspended")

            if access == Access.admin and user.role != RoleEnum.admin:
                raise ForbiddenError("Admin access required")

            g.user = user
            g.identity = Identity(user.id, user.role, user.is_verified)
            return f(*args, **kwargs)
        return wrapper
    return decorator


login_required = session_gate(Access.authenticated)
admin_required = session_gate(Access.admin)
public = session_gate(Access.public)


def establish_session(user: User) -> None:
    # login_user refuses inactive (suspended) accounts
    if not login_user(user, remember=False):
        raise ForbiddenError("Account suspended")
    session.permanent = True


def end_session() -> None:
    logout_user()
    session.clear()
