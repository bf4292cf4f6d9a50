"""
Whole-store snapshot: the load-all / save-all contract behind /api/data/.

load_all() returns every collection in one payload, writing the seed data
first when the store has never been initialised. save_all() replaces every
collection wholesale inside a single transaction.
"""

import logging
from datetime import timedelta

from django.contrib.auth.hashers import identify_hasher
from django.core.management.color import no_style
from django.db import DatabaseError, connection, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from . import policy
from .exceptions import CollaboratorFailure, LastAdminProtected, ValidationFailed
from .models import (
    ChatMessage,
    ChatThread,
    CompanyProfile,
    SessionToken,
    Unit,
    User,
    Visitor,
)
from .services import log_action

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# SEED DATA
# ---------------------------------------------------------------------------

SEED_PASSWORD = "password"

SEED_USERS = [
    {"id": 1, "username": "admin", "role": User.ADMIN},
    {"id": 2, "username": "security", "role": User.SECURITY},
    {"id": 3, "username": "officer", "role": User.OFFICER},
    {"id": 4, "username": "resident101", "role": User.RESIDENT, "unit_no": "A-101"},
    {"id": 5, "username": "resident203", "role": User.RESIDENT, "unit_no": "B-203"},
]

SEED_UNITS = [
    ("A", "101"), ("A", "102"), ("A", "103"),
    ("B", "201"), ("B", "202"), ("B", "203"),
    ("C", "301"), ("C", "305"), ("D", "401"),
]

SEED_VISITORS = [
    {"name": "ALICE JOHNSON", "contact": "555-1234", "purpose": "DELIVERY",
     "block": "A", "house_no": "101", "status": Visitor.APPROVED,
     "vehicle": "XYZ 123", "car_brand": "TOYOTA"},
    {"name": "BOB WILLIAMS", "contact": "555-5678", "purpose": "MAINTENANCE",
     "block": "B", "house_no": "203", "status": Visitor.CHECKED_IN},
    {"name": "CHARLIE BROWN", "contact": "555-8765", "purpose": "PERSONAL VISIT",
     "block": "C", "house_no": "305", "status": Visitor.PENDING},
]

SEED_COMPANY = {
    "name": "ResiGuard Cloud",
    "logo": "",
    "address": "123 Security Lane, Suite 100",
    "welcome_message": "Welcome to our secure facility.",
    "person_in_charge": "Admin User",
    "contact_number": "555-0100",
}

STATUS_BY_LABEL = {label.upper(): code for code, label in Visitor.STATUS_CHOICES}
ROLE_CODES = {code for code, _ in User.ROLE_CHOICES}


def _reset_sequences(*models):
    statements = connection.ops.sequence_reset_sql(no_style(), models)
    if statements:
        with connection.cursor() as cursor:
            for sql in statements:
                cursor.execute(sql)


def seed_defaults():
    """Write the initial users, units, visitors and company profile on an empty store."""
    with transaction.atomic():
        if CompanyProfile.objects.exists():
            return False
        if not User.objects.exists():
            for data in SEED_USERS:
                user = User(**data)
                user.set_password(SEED_PASSWORD)
                user.save()
        if not Unit.objects.exists():
            Unit.objects.bulk_create([Unit(block=b, house_no=h) for b, h in SEED_UNITS])
        if not Visitor.objects.exists():
            for data in SEED_VISITORS:
                visitor = Visitor(resident=f"{data['block']}-{data['house_no']}", **data)
                if visitor.status == Visitor.CHECKED_IN:
                    visitor.check_in_time = timezone.now() - timedelta(hours=1)
                visitor.save()
        CompanyProfile.objects.create(**SEED_COMPANY)
        _reset_sequences(User, Visitor)
    logger.info("Seeded empty store with default data.")
    return True


# ---------------------------------------------------------------------------
# EXPORT
# ---------------------------------------------------------------------------

def _iso(value):
    return value.isoformat() if value else None


def visitor_payload(v):
    return {
        "id": v.id, "name": v.name, "contact": v.contact, "purpose": v.purpose,
        "resident": v.resident, "block": v.block, "houseNo": v.house_no,
        "vehicle": v.vehicle, "carBrand": v.car_brand, "photo": v.photo,
        "status": v.status,
        "checkInTime": _iso(v.check_in_time), "checkOutTime": _iso(v.check_out_time),
    }


def user_payload(u):
    return {"id": u.id, "username": u.username, "password": u.password,
            "role": u.role, "unitNo": u.unit_no}


def company_payload(c):
    return {
        "name": c.name, "logo": c.logo, "address": c.address,
        "welcomeMessage": c.welcome_message, "personInCharge": c.person_in_charge,
        "contactNumber": c.contact_number,
    }


def thread_payload(t):
    return {
        "id": t.id, "userId": t.user_id, "userName": t.user_name, "unit": t.unit,
        "initialQuery": t.initial_query,
        "messages": [{"sender": m.sender, "text": m.text} for m in t.messages.all()],
        "dismissed": t.dismissed, "adminReplied": t.admin_replied,
    }


def load_all():
    try:
        seed_defaults()
        return {
            "visitors": [visitor_payload(v) for v in Visitor.objects.order_by("-id")],
            "users": [user_payload(u) for u in User.objects.order_by("id")],
            "companyInfo": company_payload(CompanyProfile.current()),
            "predefinedUnits": [{"block": u.block, "houseNo": u.house_no}
                                for u in sorted(Unit.objects.all(), key=Unit.sort_key)],
            "pendingChats": [thread_payload(t) for t in
                             ChatThread.objects.prefetch_related("messages").order_by("id")],
            "sessions": dict(SessionToken.objects.values_list("key", "user_id")),
        }
    except DatabaseError as exc:
        logger.exception("Error fetching data from the store")
        raise CollaboratorFailure("Failed to fetch data") from exc


# ---------------------------------------------------------------------------
# IMPORT
# ---------------------------------------------------------------------------

def _status(value):
    value = (value or "").strip()
    if value.upper() in dict(Visitor.STATUS_CHOICES):
        return value.upper()
    try:
        return STATUS_BY_LABEL[value.upper()]
    except KeyError:
        raise ValidationFailed(f"Unknown visitor status '{value}'.", "InvalidStatus",
                               field="status") from None


def _role(value):
    role = (value or "").strip().upper()
    if role not in ROLE_CODES:
        raise ValidationFailed(f"Unknown role '{value}'.", "InvalidRole", field="role")
    return role


def _is_hash(value):
    try:
        identify_hasher(value)
    except ValueError:
        return False
    return True


def _validate(payload):
    if not isinstance(payload, dict):
        raise ValidationFailed("Snapshot must be a JSON object.", "InvalidPayload")
    missing = [key for key in ("visitors", "users", "companyInfo", "predefinedUnits",
                               "pendingChats", "sessions") if key not in payload]
    if missing:
        raise ValidationFailed(f"Snapshot is missing: {', '.join(missing)}.", "MissingField",
                               data={"missing": missing})

    users = payload["users"] or []
    usernames = [(u.get("username") or "").strip() for u in users]
    if any(not name for name in usernames):
        raise ValidationFailed("Username cannot be empty.", "UsernameEmpty", field="username")
    if len(set(usernames)) != len(usernames):
        raise ValidationFailed("Usernames must be unique.", "UsernameTaken", field="username")
    if not any(_role(u.get("role")) == User.ADMIN for u in users):
        raise LastAdminProtected("A snapshot must contain at least one administrator.")


def _save_users(rows):
    # Drop users missing from the snapshot first so their usernames can be reused
    User.objects.exclude(pk__in=[row["id"] for row in rows if row.get("id")]).delete()
    # Park kept users on placeholder names so swapped usernames never collide
    for pk in User.objects.values_list("pk", flat=True):
        User.objects.filter(pk=pk).update(username=f"~import-{pk}")
    keep = []
    for row in rows:
        user = User.objects.filter(pk=row.get("id")).first() if row.get("id") else None
        user = user or User(pk=row.get("id"))
        user.username = row["username"].strip()
        user.role = _role(row.get("role"))
        user.unit_no = (row.get("unitNo") or "") if user.role == User.RESIDENT else ""
        password = row.get("password")
        if password and _is_hash(password):
            user.password = password
        elif password:
            user.set_password(password)
        elif user._state.adding:
            user.set_unusable_password()
        user.save()
        keep.append(user.pk)
    return set(keep)


def _save_visitors(rows):
    Visitor.objects.all().delete()
    Visitor.objects.bulk_create([
        Visitor(
            id=row.get("id"),
            name=row.get("name", ""), contact=row.get("contact", ""),
            purpose=row.get("purpose", ""), resident=row.get("resident", ""),
            block=row.get("block") or "", house_no=row.get("houseNo") or "",
            vehicle=row.get("vehicle") or "", car_brand=row.get("carBrand") or "",
            photo=row.get("photo") or "", status=_status(row.get("status")),
            check_in_time=parse_datetime(row["checkInTime"]) if row.get("checkInTime") else None,
            check_out_time=parse_datetime(row["checkOutTime"]) if row.get("checkOutTime") else None,
        )
        for row in rows
    ])


def _save_units(rows):
    Unit.objects.all().delete()
    seen = set()
    for row in rows:
        key = ((row.get("block") or "").strip().upper(), (row.get("houseNo") or "").strip())
        if all(key) and key not in seen:
            seen.add(key)
            Unit.objects.create(block=key[0], house_no=key[1])


def _save_chats(rows, user_ids):
    ChatThread.objects.all().delete()
    for row in rows:
        thread = ChatThread.objects.create(
            id=row.get("id"),
            user_id=row.get("userId") if row.get("userId") in user_ids else None,
            user_name=row.get("userName", ""), unit=row.get("unit", ""),
            initial_query=row.get("initialQuery", ""),
            dismissed=bool(row.get("dismissed")), admin_replied=bool(row.get("adminReplied")),
        )
        ChatMessage.objects.bulk_create([
            ChatMessage(thread=thread, sender=m.get("sender", ChatMessage.USER),
                        text=m.get("text", ""))
            for m in row.get("messages") or []
        ])


def _save_sessions(sessions, user_ids):
    SessionToken.objects.all().delete()
    SessionToken.objects.bulk_create([
        SessionToken(key=key, user_id=user_id)
        for key, user_id in (sessions or {}).items()
        if user_id in user_ids
    ])


def _save_company(data):
    data = data or {}
    profile = CompanyProfile.current() or CompanyProfile()
    profile.name = data.get("name") or ""
    profile.logo = data.get("logo") or ""
    profile.address = data.get("address") or ""
    profile.welcome_message = data.get("welcomeMessage") or ""
    profile.person_in_charge = data.get("personInCharge") or ""
    profile.contact_number = data.get("contactNumber") or ""
    profile.save()


def save_all(actor, payload):
    """Replace the whole store with `payload`. All collections or nothing."""
    policy.check(actor, "data.save")
    _validate(payload)
    try:
        with transaction.atomic():
            user_ids = _save_users(payload["users"] or [])
            _save_units(payload["predefinedUnits"] or [])
            _save_visitors(payload["visitors"] or [])
            _save_chats(payload["pendingChats"] or [], user_ids)
            _save_sessions(payload["sessions"], user_ids)
            _save_company(payload["companyInfo"])
            _reset_sequences(User, Visitor, ChatThread)
            log_action(actor if actor.pk in user_ids else None, "IMPORT", "Snapshot", "",
                       "Data saved from snapshot.")
    except DatabaseError as exc:
        logger.exception("Error saving data to the store")
        raise CollaboratorFailure("Failed to save data") from exc
    logger.info("Snapshot saved: %d visitors, %d users.",
                len(payload["visitors"] or []), len(payload["users"] or []))
