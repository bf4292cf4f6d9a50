"""
=============================================================================
RESIGUARD VISITOR DESK - views.py  (Function-Based Views)
=============================================================================
Every endpoint is a plain @api_view FBV using DRF.
Pattern per resource:
    list_create   → GET (list + filters) | POST (create)
    detail        → GET (single) | PATCH (update) | DELETE
    action views  → POST-only lifecycle transitions

Views only parse the request and shape the response. Role checks,
validation and mutation live in services.py / chat.py / snapshot.py, which
raise DeskError subclasses; exceptions.desk_exception_handler renders them.

Return format (all endpoints):
    Success → {"success": True, "data": {...}, "message": "..."}
    Error   → {"success": False, "error": "...", "details": {...}}
=============================================================================
"""

from django.utils import timezone

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from . import chat, policy, services, snapshot


# =============================================================================
# HELPERS
# =============================================================================

def ok(data=None, message="Success", status_code=status.HTTP_200_OK):
    return Response({"success": True, "message": message, "data": data}, status=status_code)


def err(error, details=None, status_code=status.HTTP_400_BAD_REQUEST):
    return Response({"success": False, "error": error, "details": details}, status=status_code)


def client_ip(request):
    return request.META.get("REMOTE_ADDR")


# =============================================================================
# Inline serialiser helpers (lightweight dicts – no separate serializers.py needed)
# =============================================================================

def _user_dict(u):
    if not u:
        return None
    return {
        "id": u.id, "username": u.username,
        "role": u.role, "role_display": u.get_role_display(),
        "unit_no": u.unit_no or None,
    }


def _unit_dict(u):
    return {"block": u.block, "house_no": u.house_no, "label": u.label}


def _visitor_dict(v, detail=False):
    d = {
        "id": v.id,
        "name": v.name,
        "contact": v.contact,
        "purpose": v.purpose,
        "resident": v.resident,
        "block": v.block,
        "house_no": v.house_no,
        "vehicle": v.vehicle or None,
        "car_brand": v.car_brand or None,
        "status": v.status,
        "status_display": v.get_status_display(),
        "check_in_time": v.check_in_time,
        "check_out_time": v.check_out_time,
    }
    if detail:
        d.update({
            "photo": v.photo or None,
            "registered_by": _user_dict(v.registered_by),
            "reviewed_by": _user_dict(v.reviewed_by),
            "checked_in_by": _user_dict(v.checked_in_by),
            "checked_out_by": _user_dict(v.checked_out_by),
            "created_at": v.created_at,
        })
    return d


def _company_dict(c):
    return {
        "name": c.name, "logo": c.logo, "address": c.address,
        "welcome_message": c.welcome_message,
        "person_in_charge": c.person_in_charge,
        "contact_number": c.contact_number,
    }


def _thread_dict(t):
    return {
        "id": t.id,
        "user_id": t.user_id,
        "user_name": t.user_name,
        "unit": t.unit,
        "initial_query": t.initial_query,
        "messages": [{"sender": m.sender, "text": m.text} for m in t.messages.all()],
        "dismissed": t.dismissed,
        "admin_replied": t.admin_replied,
        "bot_typing": t.bot_typing,
        "created_at": t.created_at,
    }


def _activity_dict(a):
    return {
        "id": a.id, "action": a.action, "message": a.description,
        "user": a.user.username if a.user else None,
        "timestamp": a.created_at,
    }


def _visitor_input(data):
    """Accept both snake_case and the camelCase field names of the desk form."""
    return {
        "name": data.get("name"),
        "contact": data.get("contact"),
        "purpose": data.get("purpose"),
        "block": data.get("block"),
        "house_no": data.get("house_no", data.get("houseNo")),
        "vehicle": data.get("vehicle"),
        "car_brand": data.get("car_brand", data.get("carBrand")),
    }


# =============================================================================
# 1. AUTHENTICATION
# =============================================================================

@api_view(["POST"])
@permission_classes([AllowAny])
def login_view(request):
    """
    POST /api/auth/login/
    Body: { "username": "...", "password": "..." }
    Returns: session token + user profile + dashboard flags.
    """
    username = (request.data.get("username") or "").strip()
    password = request.data.get("password") or ""
    if not username or not password:
        return err("Username and password are required.")

    session = services.login(username, password, ip_address=client_ip(request))
    user = session.user
    return ok({
        "token": session.key,
        "user": _user_dict(user),
        **services.session_bootstrap(user),
    }, message="Login successful.")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def logout_view(request):
    """POST /api/auth/logout/ - ends the session used for this request."""
    services.logout(request.auth)
    return ok(message="Logged out successfully.")


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def me_view(request):
    """GET /api/auth/me/ - current user + dashboard flags."""
    return ok({
        "user": _user_dict(request.user),
        **services.session_bootstrap(request.user),
    })


# =============================================================================
# 2. USER MANAGEMENT
# =============================================================================

@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def user_list_create(request):
    """
    GET  /api/users/        → list users (admin only)
    POST /api/users/        → create user (admin only)
    Body: { "username", "password", "role", "unit_no" }
    """
    if request.method == "GET":
        users = services.list_users(request.user)
        return ok({
            "results": [_user_dict(u) for u in users],
            "admin_count": services.admin_count(),
        })

    user = services.create_user(
        request.user,
        username=request.data.get("username"),
        password=request.data.get("password"),
        role=(request.data.get("role") or "").upper(),
        unit_no=request.data.get("unit_no", request.data.get("unitNo", "")),
    )
    return ok(_user_dict(user), message="User created.", status_code=status.HTTP_201_CREATED)


@api_view(["PATCH", "DELETE"])
@permission_classes([IsAuthenticated])
def user_detail(request, user_id):
    """
    PATCH  /api/users/<id>/   → edit username / password
           Body: { "username", "new_password", "confirm_password" }
    DELETE /api/users/<id>/   → delete (admin only, never self or last admin)
    """
    if request.method == "PATCH":
        user = services.edit_credentials(
            request.user, user_id,
            username=request.data.get("username"),
            new_password=request.data.get("new_password", ""),
            confirm_password=request.data.get("confirm_password", ""),
        )
        return ok(_user_dict(user), message="User updated.")

    services.delete_user(request.user, user_id)
    return ok(message="User deleted.")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def user_change_role(request, user_id):
    """POST /api/users/<id>/role/  Body: { "role": "SECURITY" }"""
    user = services.change_role(request.user, user_id, (request.data.get("role") or "").upper())
    return ok(_user_dict(user), message="Role updated.")


# =============================================================================
# 3. COMPANY PROFILE
# =============================================================================

@api_view(["GET", "PUT"])
@permission_classes([AllowAny])
def company_profile_view(request):
    """
    GET /api/company/  → public branding for the login page
    PUT /api/company/  → replace profile (admin only)
    """
    if request.method == "GET":
        return ok(_company_dict(services.company_profile()))

    data = request.data
    profile = services.update_company_profile(request.user, {
        "name": data.get("name"),
        "logo": data.get("logo"),
        "address": data.get("address"),
        "welcome_message": data.get("welcome_message", data.get("welcomeMessage")),
        "person_in_charge": data.get("person_in_charge", data.get("personInCharge")),
        "contact_number": data.get("contact_number", data.get("contactNumber")),
    })
    return ok(_company_dict(profile), message="Company profile updated.")


# =============================================================================
# 4. UNITS
# =============================================================================

@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def unit_list_create(request):
    """
    GET  /api/units/?block=A  → units ordered by block, then house number
    POST /api/units/          → { "block": "A", "house_no": "104" } (admin only)
    """
    if request.method == "GET":
        units = services.list_units(block=request.GET.get("block"))
        return ok([_unit_dict(u) for u in units])

    unit = services.add_unit(
        request.user,
        request.data.get("block"),
        request.data.get("house_no", request.data.get("houseNo")),
    )
    return ok(_unit_dict(unit), message="Unit added.", status_code=status.HTTP_201_CREATED)


@api_view(["DELETE"])
@permission_classes([IsAuthenticated])
def unit_delete(request, block, house_no):
    """DELETE /api/units/<block>/<house_no>/ (admin only)"""
    deleted = services.delete_unit(request.user, block, house_no)
    return ok({"deleted": deleted}, message="Unit deleted." if deleted else "Unit not found.")


# =============================================================================
# 5. VISITORS
# =============================================================================

@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def visitor_list_create(request):
    """
    GET  /api/visitors/?search=&status=   → residents only see their own unit
    POST /api/visitors/                   → register a new visitor (PENDING)
    """
    if request.method == "GET":
        visitors = services.visible_visitors(
            request.user,
            search=request.GET.get("search"),
            status=(request.GET.get("status") or "").upper() or None,
        )
        return ok([_visitor_dict(v) for v in visitors])

    visitor = services.register_visitor(
        request.user, _visitor_input(request.data), photo=request.data.get("photo"),
    )
    return ok(_visitor_dict(visitor, detail=True), message="Visitor registered.",
              status_code=status.HTTP_201_CREATED)


@api_view(["GET", "PATCH"])
@permission_classes([IsAuthenticated])
def visitor_detail(request, visitor_id):
    """
    GET   /api/visitors/<id>/
    PATCH /api/visitors/<id>/   → edit details (admin/officer), status untouched
    """
    if request.method == "GET":
        visitor = services.get_visitor(request.user, visitor_id)
        return ok(_visitor_dict(visitor, detail=True))

    visitor = services.edit_visitor(
        request.user, visitor_id, _visitor_input(request.data), photo=request.data.get("photo"),
    )
    return ok(_visitor_dict(visitor, detail=True), message="Visitor updated.")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def visitor_approve(request, visitor_id):
    """POST /api/visitors/<id>/approve/"""
    visitor = services.approve_visitor(request.user, visitor_id)
    return ok(_visitor_dict(visitor), message="Visit approved.")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def visitor_reject(request, visitor_id):
    """POST /api/visitors/<id>/reject/"""
    visitor = services.reject_visitor(request.user, visitor_id)
    return ok(_visitor_dict(visitor), message="Visit rejected.")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def visitor_checkin(request, visitor_id):
    """POST /api/visitors/<id>/checkin/"""
    visitor = services.check_in_visitor(request.user, visitor_id)
    return ok(_visitor_dict(visitor), message="Visitor checked in.")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def visitor_checkout(request, visitor_id):
    """POST /api/visitors/<id>/checkout/"""
    visitor = services.check_out_visitor(request.user, visitor_id)
    return ok(_visitor_dict(visitor), message="Visitor checked out.")


# =============================================================================
# 6. SUPPORT CHAT
# =============================================================================

@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def chat_list_create(request):
    """
    GET  /api/chats/   → staff: undismissed threads | others: their own threads
    POST /api/chats/   → { "name", "unit" | "block"+"house_no", "query" }
    """
    if request.method == "GET":
        if policy.is_reviewer(request.user):
            threads = chat.staff_notifications(request.user)
        else:
            threads = chat.user_threads(request.user)
        return ok([_thread_dict(t) for t in threads])

    data = request.data
    unit = data.get("unit")
    if not unit and data.get("block"):
        unit = f"{data.get('block')}-{data.get('house_no', data.get('houseNo', ''))}"
    thread = chat.start_thread(
        request.user, data.get("name"), unit, data.get("query", data.get("initial_query")),
    )
    return ok(_thread_dict(thread), message="Chat started.", status_code=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def chat_active(request):
    """GET /api/chats/active/ - the resident's open thread, if any."""
    thread_id = services.active_thread_id(request.user)
    if thread_id is None:
        return ok(None, message="No active chat.")
    return ok(_thread_dict(chat.get_thread(request.user, thread_id)))


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def chat_detail(request, thread_id):
    """GET /api/chats/<id>/"""
    return ok(_thread_dict(chat.get_thread(request.user, thread_id)))


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_reply(request, thread_id):
    """POST /api/chats/<id>/reply/ - resident message, answered by the assistant."""
    thread = chat.user_reply(request.user, thread_id, request.data.get("text"))
    return ok(_thread_dict(thread))


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_admin_reply(request, thread_id):
    """POST /api/chats/<id>/admin-reply/ - staff answer; locks the thread for the resident."""
    thread = chat.admin_reply(request.user, thread_id, request.data.get("text"))
    return ok(_thread_dict(thread), message="Reply sent.")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_dismiss(request, thread_id):
    """POST /api/chats/<id>/dismiss/"""
    thread = chat.dismiss(request.user, thread_id)
    return ok(_thread_dict(thread), message="Chat dismissed.")


# =============================================================================
# 7. DASHBOARD
# =============================================================================

@api_view(["GET"])
@permission_classes([IsAuthenticated])
def overview_view(request):
    """GET /api/overview/ - headline numbers for staff."""
    stats = services.overview(request.user)
    stats["checked_in_visitors"] = [_visitor_dict(v) for v in stats["checked_in_visitors"]]
    return ok(stats)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def activity_view(request):
    """GET /api/activity/ - most recent audit entries."""
    return ok([_activity_dict(a) for a in services.recent_activity(request.user)])


# =============================================================================
# 8. DATA SNAPSHOT
# =============================================================================

@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def data_view(request):
    """
    GET  /api/data/  → every collection in one payload (staff)
    POST /api/data/  → replace every collection (admin)
    """
    if request.method == "GET":
        policy.check(request.user, "data.load")
        return Response(snapshot.load_all())

    snapshot.save_all(request.user, request.data)
    return ok(message="Data saved successfully")


# =============================================================================
# SYSTEM
# =============================================================================

@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """GET /api/health/ - basic liveness probe."""
    return ok({"status": "ok", "timestamp": timezone.now()}, message="ResiGuard API is running.")
