"""
=============================================================================
RESIGUARD VISITOR DESK - admin.py
=============================================================================
Django Admin configuration for every desk model.
Features:
  - list_display, list_filter, search_fields per model
  - Chat messages inline on their thread
  - Custom actions (approve / reject pending visits, export CSV), run
    through the desk services so role and lifecycle rules still apply
  - Read-only audit trail
  - Colour-coded status badges
=============================================================================
"""

import csv
from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.html import format_html
from django.http import HttpResponse

from . import chat, services
from .exceptions import DeskError
from .models import (
    AuditLog,
    ChatMessage,
    ChatThread,
    CompanyProfile,
    SessionToken,
    Unit,
    User,
    Visitor,
)


# =============================================================================
# UTILITY: CSV EXPORT ACTION
# =============================================================================

def export_as_csv(modeladmin, request, queryset):
    """Generic action to export selected records as CSV."""
    meta = modeladmin.model._meta
    field_names = [field.name for field in meta.fields if field.name != "password"]

    response = HttpResponse(content_type="text/csv")
    response["Content-Disposition"] = f"attachment; filename={meta.model_name}_export.csv"

    writer = csv.writer(response)
    writer.writerow(field_names)
    for obj in queryset:
        writer.writerow([getattr(obj, field) for field in field_names])
    return response

export_as_csv.short_description = "Export selected records as CSV"


def run_per_row(modeladmin, request, queryset, operation, verb):
    """Apply a desk operation to each selected row, reporting refusals per row."""
    done = 0
    for obj in queryset:
        try:
            operation(request.user, obj.pk)
        except DeskError as exc:
            modeladmin.message_user(request, f"{obj}: {exc.message}", level=messages.WARNING)
        else:
            done += 1
    modeladmin.message_user(request, f"{done} {verb}.")
    return done


# =============================================================================
# UTILITY: STATUS BADGE HELPERS
# =============================================================================

STATUS_COLORS = {
    Visitor.PENDING:     "#f59e0b",
    Visitor.APPROVED:    "#3b82f6",
    Visitor.CHECKED_IN:  "#10b981",
    Visitor.CHECKED_OUT: "#6b7280",
    Visitor.REJECTED:    "#ef4444",
}


def colored_status(status, label=None):
    color = STATUS_COLORS.get(status, "#6b7280")
    return format_html(
        '<span style="background:{};color:#fff;padding:2px 8px;border-radius:4px;'
        'font-size:11px;font-weight:600;">{}</span>',
        color, label or status,
    )


# =============================================================================
# 1. UNITS
# =============================================================================

@admin.register(Unit)
class UnitAdmin(admin.ModelAdmin):
    list_display = ("label", "block", "house_no", "created_at")
    list_filter = ("block",)
    search_fields = ("block", "house_no")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("block", "house_no")
    actions = [export_as_csv]


# =============================================================================
# 2. USERS & SESSIONS
# =============================================================================

@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("username", "role", "unit_no", "is_active", "last_login")
    list_filter = ("role", "is_active")
    search_fields = ("username", "unit_no")
    readonly_fields = ("created_at", "updated_at", "last_login", "date_joined")
    ordering = ("id",)
    actions = [export_as_csv]

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Desk Profile", {
            "fields": ("role", "unit_no", "created_at", "updated_at")
        }),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Desk Profile", {
            "fields": ("role", "unit_no")
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            # Role changes go through the last-admin guard in services
            return self.readonly_fields + ("role",)
        return self.readonly_fields

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.role == User.ADMIN and services.admin_count() <= 1:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(SessionToken)
class SessionTokenAdmin(admin.ModelAdmin):
    list_display = ("short_key", "user", "created_at")
    search_fields = ("user__username",)
    readonly_fields = ("key", "user", "created_at")

    def short_key(self, obj):
        return f"{obj.key[:8]}..."
    short_key.short_description = "Token"

    def has_add_permission(self, request):
        return False  # Minted by login only


# =============================================================================
# 3. VISITORS
# =============================================================================

@admin.register(Visitor)
class VisitorAdmin(admin.ModelAdmin):
    list_display = ("name", "resident", "purpose", "contact", "vehicle",
                    "colored_status_badge", "check_in_time", "check_out_time")
    list_filter = ("status", "block")
    search_fields = ("name", "resident", "purpose", "vehicle", "car_brand", "contact")
    # Lifecycle moves only through the approve / reject / check-in / check-out operations
    readonly_fields = ("id", "created_at", "updated_at", "status", "check_in_time",
                       "check_out_time", "registered_by", "reviewed_by",
                       "checked_in_by", "checked_out_by")
    date_hierarchy = "created_at"
    actions = [export_as_csv, "approve_visits", "reject_visits"]

    fieldsets = (
        ("Visitor", {
            "fields": ("id", "name", "contact", "purpose", "photo")
        }),
        ("Destination", {
            "fields": ("block", "house_no", "resident")
        }),
        ("Vehicle", {
            "fields": ("vehicle", "car_brand")
        }),
        ("Lifecycle", {
            "fields": ("status", "check_in_time", "check_out_time", "registered_by",
                       "reviewed_by", "checked_in_by", "checked_out_by")
        }),
        ("Timestamps", {
            "classes": ("collapse",),
            "fields": ("created_at", "updated_at")
        }),
    )

    def colored_status_badge(self, obj):
        return colored_status(obj.status, obj.get_status_display())
    colored_status_badge.short_description = "Status"

    @admin.action(description="Approve selected pending visits")
    def approve_visits(self, request, queryset):
        run_per_row(self, request, queryset, services.approve_visitor, "visit(s) approved")

    @admin.action(description="Reject selected pending visits")
    def reject_visits(self, request, queryset):
        run_per_row(self, request, queryset, services.reject_visitor, "visit(s) rejected")


# =============================================================================
# 4. COMPANY PROFILE
# =============================================================================

@admin.register(CompanyProfile)
class CompanyProfileAdmin(admin.ModelAdmin):
    list_display = ("name", "person_in_charge", "contact_number", "updated_at")
    readonly_fields = ("created_at", "updated_at")

    def has_add_permission(self, request):
        return not CompanyProfile.objects.exists()


# =============================================================================
# 5. SUPPORT CHAT
# =============================================================================

class ChatMessageInline(admin.TabularInline):
    model = ChatMessage
    extra = 0
    fields = ("sender", "text", "created_at")
    readonly_fields = ("sender", "text", "created_at")
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False  # Messages are appended by the chat operations

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(ChatThread)
class ChatThreadAdmin(admin.ModelAdmin):
    list_display = ("id", "user_name", "unit", "initial_query", "admin_replied",
                    "dismissed", "created_at")
    list_filter = ("admin_replied", "dismissed")
    search_fields = ("user_name", "unit", "initial_query", "user__username")
    readonly_fields = ("created_at", "updated_at", "admin_replied", "dismissed", "bot_typing")
    inlines = [ChatMessageInline]
    actions = [export_as_csv, "dismiss_threads"]

    @admin.action(description="Dismiss selected chats")
    def dismiss_threads(self, request, queryset):
        run_per_row(self, request, queryset, chat.dismiss, "chat(s) dismissed")


# =============================================================================
# 6. AUDIT LOG  (read-only)
# =============================================================================

@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "model_name", "object_id", "user", "ip_address", "created_at")
    list_filter = ("action", "model_name")
    search_fields = ("description", "model_name", "object_id", "user__username", "ip_address")
    readonly_fields = ("id", "created_at", "updated_at", "user", "action",
                       "model_name", "object_id", "description", "ip_address")
    date_hierarchy = "created_at"

    def has_add_permission(self, request):
        return False  # Audit logs are system-generated only

    def has_change_permission(self, request, obj=None):
        return False  # Immutable

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================================
# ADMIN SITE BRANDING
# =============================================================================

admin.site.site_header = "ResiGuard – Visitor Desk"
admin.site.site_title = "ResiGuard Admin"
admin.site.index_title = "Front Desk Operations"
