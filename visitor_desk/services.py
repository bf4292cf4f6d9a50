"""
=============================================================================
RESIGUARD VISITOR DESK - services.py
=============================================================================
Every state change of the desk goes through a function in this module
(or chat.py for support threads). Views never write model fields directly.

Pattern per operation:
    policy.check(actor, "<operation>")      → RoleNotPermitted
    validate input against current rows     → ValidationFailed / Invariant*
    mutate inside transaction.atomic()      → select_for_update on the target
    log_action(...)                         → AuditLog activity entry

Sections:
    1. Audit helper
    2. Session Manager
    3. User & Role Store
    4. Unit Registry
    5. Visitor Registry & Lifecycle
    6. Company profile, overview, activity
=============================================================================
"""

import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from . import policy
from .exceptions import (
    InvalidCredentials,
    InvalidTransition,
    LastAdminProtected,
    RoleNotPermitted,
    SelfDeleteForbidden,
    ValidationFailed,
)
from .models import (
    AuditLog,
    ChatThread,
    CompanyProfile,
    SessionToken,
    Unit,
    User,
    Visitor,
)

logger = logging.getLogger(__name__)

ROLE_CODES = {code for code, _ in User.ROLE_CHOICES}


# =============================================================================
# 1. AUDIT
# =============================================================================

def log_action(user, action, model_name, object_id, description, ip_address=None):
    """Write to immutable AuditLog."""
    actor = user if user is not None and getattr(user, "pk", None) else None
    AuditLog.objects.create(
        user=actor,
        action=action,
        model_name=model_name,
        object_id=str(object_id) if object_id is not None else "",
        description=description,
        ip_address=ip_address,
    )


def _clean(value, upper=False):
    value = (value or "").strip()
    return value.upper() if upper else value


# =============================================================================
# 2. SESSION MANAGER
# =============================================================================

def login(username, password, ip_address=None):
    """Verify credentials and mint a new opaque session token."""
    user = User.objects.filter(username=username or "").first()
    if user is None or not user.check_password(password or "") or not user.is_active:
        logger.info("Rejected login for %r from %s", username, ip_address or "unknown")
        raise InvalidCredentials("Invalid username or password.")

    session = SessionToken.objects.create(key=SessionToken.generate_key(), user=user)
    user.last_login = timezone.now()
    user.save(update_fields=["last_login"])
    log_action(user, "LOGIN", "User", user.id, f"{user.username} logged in.", ip_address)
    return session


def resolve(token):
    """Return the user behind `token`, or None for unknown/stale tokens."""
    if not token:
        return None
    session = SessionToken.objects.select_related("user").filter(key=token).first()
    if session is None:
        return None
    return session.user


def logout(token):
    session = SessionToken.objects.select_related("user").filter(key=token or "").first()
    if session is None:
        return
    user = session.user
    session.delete()
    log_action(user, "LOGOUT", "User", user.id, f"{user.username} logged out.")


def session_bootstrap(user):
    """Flags the dashboard needs right after login."""
    reviewer = policy.is_reviewer(user)
    return {
        "show_approvals": reviewer and Visitor.objects.filter(status=Visitor.PENDING).exists(),
        "show_chat_notifications": reviewer and ChatThread.objects.filter(dismissed=False).exists(),
        "active_chat_id": active_thread_id(user),
    }


def active_thread_id(user):
    """Most recent thread of a resident that staff have neither answered nor dismissed."""
    if not policy.is_resident(user):
        return None
    thread = (ChatThread.objects
              .filter(user=user, admin_replied=False, dismissed=False)
              .order_by("-id").first())
    return thread.id if thread else None


# =============================================================================
# 3. USER & ROLE STORE
# =============================================================================

def admin_count():
    return User.objects.filter(role=User.ADMIN).count()


def _lock_admins(actor, operation):
    """Lock every admin row and return their ids; last-admin checks count these."""
    admin_ids = list(User.objects.select_for_update().filter(role=User.ADMIN)
                     .order_by("id").values_list("id", flat=True))
    # actor may have been demoted since the request was authenticated
    if actor.id not in admin_ids:
        raise RoleNotPermitted("Permission denied.", data={"operation": operation})
    return admin_ids


def list_users(actor):
    policy.check(actor, "user.list")
    return User.objects.all().order_by("id")


def create_user(actor, username, password, role, unit_no=""):
    policy.check(actor, "user.create")
    username = _clean(username)
    if not username:
        raise ValidationFailed("Username cannot be empty.", "UsernameEmpty", field="username")
    if not password:
        raise ValidationFailed("Password is required.", "MissingField", field="password")
    if role not in ROLE_CODES:
        raise ValidationFailed(f"Unknown role '{role}'.", "InvalidRole", field="role")

    with transaction.atomic():
        if User.objects.filter(username=username).exists():
            raise ValidationFailed("This username is already taken. Please choose another.",
                                   "UsernameTaken", field="username")
        user = User(username=username, role=role,
                    unit_no=_clean(unit_no, upper=True) if role == User.RESIDENT else "")
        user.set_password(password)
        user.save()
        log_action(actor, "CREATE", "User", user.id, f"Created user: {user.username}.")
    return user


def change_role(actor, target_id, new_role):
    policy.check(actor, "user.change_role")
    if new_role not in ROLE_CODES:
        raise ValidationFailed(f"Unknown role '{new_role}'.", "InvalidRole", field="role")

    with transaction.atomic():
        admins = _lock_admins(actor, "user.change_role")
        target = User.objects.select_for_update().get(pk=target_id)
        if target.id == actor.id and new_role != User.ADMIN and len(admins) <= 1:
            raise LastAdminProtected(
                "You cannot change your role as you are the only administrator. "
                "Please assign the Admin role to another user first."
            )
        old_role = target.role
        target.role = new_role
        target.save(update_fields=["role", "updated_at"])
        log_action(actor, "UPDATE", "User", target.id,
                   f"Changed role of {target.username}: {old_role} -> {new_role}.")
    if target.id == actor.id:
        actor.role = new_role
    return target


def delete_user(actor, target_id):
    policy.check(actor, "user.delete")
    with transaction.atomic():
        admins = _lock_admins(actor, "user.delete")
        target = User.objects.select_for_update().get(pk=target_id)
        if target.id == actor.id:
            raise SelfDeleteForbidden("You cannot delete your own account.")
        if target.role == User.ADMIN and len(admins) <= 1:
            raise LastAdminProtected("You cannot delete the last administrator.")
        username = target.username
        target.delete()
        log_action(actor, "DELETE", "User", target_id, f"Deleted user: {username}.")


def edit_credentials(actor, target_id, username, new_password="", confirm_password=""):
    """Rename a user and optionally set a new password. Blank password = keep."""
    policy.check(actor, "user.edit_credentials")
    username = _clean(username)
    new_password = new_password or ""
    confirm_password = confirm_password or ""
    if not username:
        raise ValidationFailed("Username cannot be empty.", "UsernameEmpty", field="username")
    if new_password != confirm_password:
        raise ValidationFailed("Passwords do not match.", "PasswordMismatch",
                               field="confirm_password")

    with transaction.atomic():
        target = User.objects.select_for_update().get(pk=target_id)
        if User.objects.filter(username=username).exclude(pk=target.pk).exists():
            raise ValidationFailed("This username is already taken. Please choose another.",
                                   "UsernameTaken", field="username")
        old_username = target.username
        target.username = username
        if new_password:
            target.set_password(new_password)
        target.save()
        log_action(actor, "UPDATE", "User", target.id,
                   f"Updated user: {old_username} -> {username}.")
    return target


# =============================================================================
# 4. UNIT REGISTRY
# =============================================================================

def list_units(block=None):
    qs = Unit.objects.all()
    if block:
        qs = qs.filter(block=_clean(block, upper=True))
    return sorted(qs, key=Unit.sort_key)


def unit_exists(block, house_no):
    return Unit.objects.filter(block=block, house_no=house_no).exists()


def add_unit(actor, block, house_no):
    policy.check(actor, "unit.add")
    block = _clean(block, upper=True)
    house_no = _clean(house_no)
    if not block or not house_no:
        raise ValidationFailed("Both Block and House No. are required.", "MissingField",
                               field="block" if not block else "house_no")

    with transaction.atomic():
        if unit_exists(block, house_no):
            raise ValidationFailed("This unit already exists.", "DuplicateUnit",
                                   data={"unit": f"{block}-{house_no}"})
        unit = Unit.objects.create(block=block, house_no=house_no)
        log_action(actor, "CREATE", "Unit", unit.id, f"Added unit {unit.label}.")
    return unit


def delete_unit(actor, block, house_no):
    """Remove a unit if present. Users and visitors pointing at it are left as-is."""
    policy.check(actor, "unit.delete")
    block = _clean(block, upper=True)
    house_no = _clean(house_no)
    deleted, _ = Unit.objects.filter(block=block, house_no=house_no).delete()
    if deleted:
        log_action(actor, "DELETE", "Unit", f"{block}-{house_no}",
                   f"Deleted unit {block}-{house_no}.")
    return bool(deleted)


# =============================================================================
# 5. VISITOR REGISTRY & LIFECYCLE
# =============================================================================

VISITOR_REQUIRED = ("name", "contact", "purpose", "block", "house_no")


def _visitor_fields(data):
    block = _clean(data.get("block"), upper=True)
    house_no = _clean(data.get("house_no"))
    fields = {
        "name": _clean(data.get("name"), upper=True),
        "contact": _clean(data.get("contact")),
        "purpose": _clean(data.get("purpose"), upper=True),
        "block": block,
        "house_no": house_no,
        "resident": f"{block}-{house_no}",
        "vehicle": _clean(data.get("vehicle"), upper=True),
        "car_brand": _clean(data.get("car_brand"), upper=True),
    }
    for name in VISITOR_REQUIRED:
        if not fields[name]:
            raise ValidationFailed(f"Field '{name}' is required.", "MissingField", field=name)
    return fields


def visible_visitors(actor, search=None, status=None):
    """Visitors the actor may read, newest first. Residents see their unit only."""
    policy.check(actor, "visitor.view")
    qs = Visitor.objects.all()
    if policy.is_resident(actor):
        qs = qs.filter(resident=actor.unit_no) if actor.unit_no else qs.none()
    if status:
        qs = qs.filter(status=status)
    if search:
        qs = qs.filter(
            Q(name__icontains=search) | Q(resident__icontains=search) |
            Q(purpose__icontains=search) | Q(vehicle__icontains=search) |
            Q(car_brand__icontains=search)
        )
    return qs.order_by("-id")


def get_visitor(actor, visitor_id):
    visitor = Visitor.objects.get(pk=visitor_id)
    policy.check(actor, "visitor.view", visitor)
    return visitor


def register_visitor(actor, data, photo=None):
    policy.check(actor, "visitor.register")
    fields = _visitor_fields(data)
    if not unit_exists(fields["block"], fields["house_no"]):
        raise ValidationFailed(f"Unit {fields['resident']} is not a registered unit.",
                               "UnknownUnit", field="house_no")

    with transaction.atomic():
        visitor = Visitor.objects.create(
            **fields, photo=photo or "", status=Visitor.PENDING, registered_by=actor,
        )
        log_action(actor, "CREATE", "Visitor", visitor.id,
                   f"Registered new visitor: {visitor.name}")
    return visitor


def edit_visitor(actor, visitor_id, data, photo=None):
    """Update the descriptive fields of a visitor. Status and timestamps stay put."""
    policy.check(actor, "visitor.edit")
    fields = _visitor_fields(data)

    with transaction.atomic():
        visitor = Visitor.objects.select_for_update().get(pk=visitor_id)
        unit_changed = (fields["block"], fields["house_no"]) != (visitor.block, visitor.house_no)
        if unit_changed and not unit_exists(fields["block"], fields["house_no"]):
            raise ValidationFailed(f"Unit {fields['resident']} is not a registered unit.",
                                   "UnknownUnit", field="house_no")
        for name, value in fields.items():
            setattr(visitor, name, value)
        if photo:
            visitor.photo = photo
        visitor.save()
        log_action(actor, "UPDATE", "Visitor", visitor.id, f"Updated details for {visitor.name}.")
    return visitor


TRANSITION_LOG = {
    "approve": ("APPROVE", "Visit for {name} was approved."),
    "reject": ("REJECT", "Visit for {name} was rejected."),
    "check_in": ("CHECKIN", "{name} checked in."),
    "check_out": ("CHECKOUT", "{name} checked out."),
}


def transition_visitor(actor, visitor_id, action):
    """Move a visitor one step along PENDING → APPROVED → CHECKED_IN → CHECKED_OUT."""
    policy.check(actor, f"visitor.{action}")

    with transaction.atomic():
        visitor = Visitor.objects.select_for_update().get(pk=visitor_id)
        required, target = Visitor.TRANSITIONS[action]
        if visitor.status != required:
            raise InvalidTransition(
                f"Cannot {action.replace('_', ' ')} a visitor with status "
                f"'{visitor.get_status_display()}'.",
                data={"status": visitor.status, "required": required},
            )

        now = timezone.now()
        visitor.status = target
        if action in ("approve", "reject"):
            visitor.reviewed_by = actor
        elif action == "check_in":
            visitor.check_in_time = now
            visitor.checked_in_by = actor
        else:
            # Stamps on one record never go backwards
            if visitor.check_in_time and now < visitor.check_in_time:
                now = visitor.check_in_time
            visitor.check_out_time = now
            visitor.checked_out_by = actor
        visitor.save()

        audit_action, template = TRANSITION_LOG[action]
        log_action(actor, audit_action, "Visitor", visitor.id, template.format(name=visitor.name))
    return visitor


def approve_visitor(actor, visitor_id):
    return transition_visitor(actor, visitor_id, "approve")


def reject_visitor(actor, visitor_id):
    return transition_visitor(actor, visitor_id, "reject")


def check_in_visitor(actor, visitor_id):
    return transition_visitor(actor, visitor_id, "check_in")


def check_out_visitor(actor, visitor_id):
    return transition_visitor(actor, visitor_id, "check_out")


# =============================================================================
# 6. COMPANY PROFILE, OVERVIEW, ACTIVITY
# =============================================================================

COMPANY_FIELDS = ("name", "logo", "address", "welcome_message",
                  "person_in_charge", "contact_number")


def company_profile():
    profile = CompanyProfile.current()
    if profile is None:
        from .snapshot import seed_defaults
        seed_defaults()
        profile = CompanyProfile.current()
    return profile


def update_company_profile(actor, data):
    """Replace the company profile wholesale. A missing logo keeps the current one."""
    policy.check(actor, "company.update")
    if not _clean(data.get("name")):
        raise ValidationFailed("Company name is required.", "MissingField", field="name")

    with transaction.atomic():
        profile = company_profile()
        for name in COMPANY_FIELDS:
            if name == "logo" and not data.get("logo"):
                continue
            setattr(profile, name, data.get(name) or "")
        profile.save()
        log_action(actor, "UPDATE", "CompanyProfile", profile.pk,
                   f"Company profile updated by {actor.username}.")
    return profile


def overview(actor):
    policy.check(actor, "overview.view")
    today = timezone.localdate()
    purposes = (Visitor.objects.values("purpose")
                .annotate(count=Count("id"))
                .order_by("-count", "purpose"))
    return {
        "total_visitors": Visitor.objects.count(),
        "checked_in": Visitor.objects.filter(status=Visitor.CHECKED_IN).count(),
        "pending": Visitor.objects.filter(status=Visitor.PENDING).count(),
        "checked_out_today": Visitor.objects.filter(
            status=Visitor.CHECKED_OUT, check_out_time__date=today).count(),
        "purposes": [{"purpose": p["purpose"], "count": p["count"]} for p in purposes],
        "checked_in_visitors": list(
            Visitor.objects.filter(status=Visitor.CHECKED_IN).order_by("check_in_time")),
    }


def recent_activity(actor, limit=None):
    policy.check(actor, "activity.view")
    limit = limit or settings.RESIGUARD_ACTIVITY_LIMIT
    return AuditLog.objects.select_related("user")[:limit]
