"""
Role policy for every state-changing desk operation.

Each operation name maps to the roles allowed to perform it. Callers run
check() before touching any row so a refused call never mutates anything.
"""

from .exceptions import RoleNotPermitted
from .models import User

ADMIN = User.ADMIN
SECURITY = User.SECURITY
OFFICER = User.OFFICER
RESIDENT = User.RESIDENT

STAFF_ROLES = frozenset({ADMIN, SECURITY, OFFICER})
REVIEW_ROLES = frozenset({ADMIN, OFFICER})
GATE_ROLES = frozenset({ADMIN, SECURITY})
ALL_ROLES = frozenset({ADMIN, SECURITY, OFFICER, RESIDENT})

PERMISSIONS = {
    # Visitors
    "visitor.register": STAFF_ROLES,
    "visitor.edit": REVIEW_ROLES,
    "visitor.approve": REVIEW_ROLES,
    "visitor.reject": REVIEW_ROLES,
    "visitor.check_in": GATE_ROLES,
    "visitor.check_out": GATE_ROLES,
    "visitor.view": ALL_ROLES,
    # Users
    "user.list": frozenset({ADMIN}),
    "user.create": frozenset({ADMIN}),
    "user.change_role": frozenset({ADMIN}),
    "user.delete": frozenset({ADMIN}),
    "user.edit_credentials": frozenset({ADMIN}),
    # Units
    "unit.add": frozenset({ADMIN}),
    "unit.delete": frozenset({ADMIN}),
    # Company
    "company.update": frozenset({ADMIN}),
    # Chat
    "chat.start": ALL_ROLES,
    "chat.view": ALL_ROLES,
    "chat.user_reply": ALL_ROLES,
    "chat.admin_reply": REVIEW_ROLES,
    "chat.dismiss": REVIEW_ROLES,
    "chat.notifications": REVIEW_ROLES,
    # Dashboard
    "overview.view": STAFF_ROLES,
    "activity.view": STAFF_ROLES,
    # Snapshot
    "data.load": STAFF_ROLES,
    "data.save": frozenset({ADMIN}),
}

MESSAGES = {
    "visitor.register": "Only desk staff can register visitors.",
    "visitor.edit": "Only admins and officers can edit visitor details.",
    "visitor.approve": "Only admins and officers can approve visits.",
    "visitor.reject": "Only admins and officers can reject visits.",
    "visitor.check_in": "Only security staff can perform check-in.",
    "visitor.check_out": "Only security staff can perform check-out.",
    "chat.view": "You can only view chats you started.",
    "chat.user_reply": "Only the resident who started this chat can reply to it.",
    "chat.admin_reply": "Only admins and officers can reply to chats.",
}


def allowed(actor, operation, target=None):
    if actor is None or not getattr(actor, "is_authenticated", False):
        return False
    if actor.role not in PERMISSIONS[operation]:
        return False
    if target is None:
        return True

    # Entity-level rules on top of the role table
    if operation == "visitor.view" and actor.role == RESIDENT:
        return bool(actor.unit_no) and target.resident == actor.unit_no
    if operation == "chat.view" and actor.role not in REVIEW_ROLES:
        return target.user_id is not None and target.user_id == actor.id
    if operation == "chat.user_reply":
        return target.user_id is not None and target.user_id == actor.id
    return True


def check(actor, operation, target=None):
    """Raise RoleNotPermitted unless `actor` may run `operation` on `target`."""
    if not allowed(actor, operation, target):
        raise RoleNotPermitted(MESSAGES.get(operation, "Permission denied."),
                               data={"operation": operation})


def is_staff(user):
    return user.role in STAFF_ROLES


def is_reviewer(user):
    return user.role in REVIEW_ROLES


def is_resident(user):
    return user.role == RESIDENT
