"""
=============================================================================
RESIGUARD VISITOR DESK - DJANGO MODELS
Residential front desk / gated community
=============================================================================

ARCHITECTURE OVERVIEW:
  Core Modules:
    1.  Units (block + house number directory)
    2.  Users & Roles (Admin, Security, Officer, Resident)
    3.  Sessions (opaque bearer tokens)
    4.  Visitors & Visit Lifecycle
    5.  Company Profile (singleton)
    6.  Support Chat Threads
    7.  Audit Trail

=============================================================================
"""

import re
import secrets

from django.db import models
from django.contrib.auth.models import AbstractUser


# ---------------------------------------------------------------------------
# UTILITY MIXINS
# ---------------------------------------------------------------------------

class TimeStampedModel(models.Model):
    """Abstract base with created/updated timestamps."""
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


def natural_key(value):
    """Split digits out of a string so "9" sorts before "10"."""
    return [int(part) if part.isdigit() else part.lower()
            for part in re.split(r"(\d+)", value or "")]


# ---------------------------------------------------------------------------
# 1. UNITS
# ---------------------------------------------------------------------------

class Unit(TimeStampedModel):
    """A valid (block, house number) pair that visitors can be registered against."""
    block = models.CharField(max_length=20, help_text="e.g. A, B, TOWER1")
    house_no = models.CharField(max_length=20, help_text="e.g. 101, 9B")

    def __str__(self):
        return self.label

    @property
    def label(self):
        return f"{self.block}-{self.house_no}"

    def sort_key(self):
        return (self.block, natural_key(self.house_no))

    class Meta:
        unique_together = ("block", "house_no")
        ordering = ["block", "house_no"]


# ---------------------------------------------------------------------------
# 2. USERS & ROLES
# ---------------------------------------------------------------------------

class User(AbstractUser):
    """
    Desk account. Admins manage the estate, Security works the gate,
    Officers review visits and answer chats, Residents follow their own visitors.
    """
    ADMIN = "ADMIN"
    SECURITY = "SECURITY"
    OFFICER = "OFFICER"
    RESIDENT = "RESIDENT"
    ROLE_CHOICES = [
        (ADMIN, "Admin"),
        (SECURITY, "Security"),
        (OFFICER, "Officer"),
        (RESIDENT, "Resident"),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=RESIDENT)
    unit_no = models.CharField(
        max_length=41, blank=True,
        help_text="Block-HouseNo for residents, e.g. A-101. Not checked against units."
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.username} ({self.role})"

    @property
    def is_desk_admin(self):
        return self.role == self.ADMIN


# ---------------------------------------------------------------------------
# 3. SESSIONS
# ---------------------------------------------------------------------------

class SessionToken(models.Model):
    """Opaque bearer token -> user. A user may hold many at once."""
    key = models.CharField(max_length=64, primary_key=True)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="session_tokens")
    created_at = models.DateTimeField(auto_now_add=True)

    @classmethod
    def generate_key(cls):
        return secrets.token_urlsafe(32)

    def __str__(self):
        return f"Session {self.key[:8]}... -> {self.user_id}"


# ---------------------------------------------------------------------------
# 4. VISITORS & VISIT LIFECYCLE  (Core)
# ---------------------------------------------------------------------------

class Visitor(TimeStampedModel):
    """
    One visit to one unit. Re-visiting after rejection or check-out means
    registering a new record.
    """
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (APPROVED, "Approved"),
        (REJECTED, "Rejected"),
        (CHECKED_IN, "Checked-in"),
        (CHECKED_OUT, "Checked-out"),
    ]
    # action -> (required current status, resulting status)
    TRANSITIONS = {
        "approve": (PENDING, APPROVED),
        "reject": (PENDING, REJECTED),
        "check_in": (APPROVED, CHECKED_IN),
        "check_out": (CHECKED_IN, CHECKED_OUT),
    }
    TERMINAL_STATUSES = (REJECTED, CHECKED_OUT)

    id = models.BigAutoField(primary_key=True)
    name = models.CharField(max_length=200)
    contact = models.CharField(max_length=50)
    purpose = models.CharField(max_length=200)
    resident = models.CharField(max_length=41, help_text="Unit visited, Block-HouseNo")
    block = models.CharField(max_length=20)
    house_no = models.CharField(max_length=20)
    vehicle = models.CharField(max_length=30, blank=True)
    car_brand = models.CharField(max_length=50, blank=True)
    photo = models.TextField(blank=True, help_text="Base64 data URL from the desk camera")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    check_in_time = models.DateTimeField(null=True, blank=True)
    check_out_time = models.DateTimeField(null=True, blank=True)

    registered_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="registered_visitors"
    )
    reviewed_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="reviewed_visitors"
    )
    checked_in_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="checked_in_visitors"
    )
    checked_out_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="checked_out_visitors"
    )

    def __str__(self):
        return f"{self.name} -> {self.resident} [{self.status}]"

    @property
    def is_closed(self):
        return self.status in self.TERMINAL_STATUSES

    def can(self, action):
        required, _ = self.TRANSITIONS[action]
        return self.status == required

    class Meta:
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["status"], name="visitor_status_idx"),
            models.Index(fields=["resident"], name="visitor_resident_idx"),
        ]


# ---------------------------------------------------------------------------
# 5. COMPANY PROFILE
# ---------------------------------------------------------------------------

class CompanyProfile(TimeStampedModel):
    """Branding shown on the login page and header. Exactly one row (pk=1)."""
    SINGLETON_ID = 1

    name = models.CharField(max_length=200)
    logo = models.TextField(blank=True, help_text="Base64 data URL")
    address = models.CharField(max_length=300, blank=True)
    welcome_message = models.TextField(blank=True)
    person_in_charge = models.CharField(max_length=100, blank=True)
    contact_number = models.CharField(max_length=50, blank=True)

    def save(self, *args, **kwargs):
        self.pk = self.SINGLETON_ID
        super().save(*args, **kwargs)

    @classmethod
    def current(cls):
        return cls.objects.filter(pk=cls.SINGLETON_ID).first()

    def __str__(self):
        return self.name


# ---------------------------------------------------------------------------
# 6. SUPPORT CHAT
# ---------------------------------------------------------------------------

class ChatThread(TimeStampedModel):
    """
    A support conversation started from the chat widget.
    admin_replied and dismissed only ever go False -> True.
    """
    id = models.BigAutoField(primary_key=True)
    user = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="chat_threads"
    )
    user_name = models.CharField(max_length=100)
    unit = models.CharField(max_length=41)
    initial_query = models.TextField()
    dismissed = models.BooleanField(default=False)
    admin_replied = models.BooleanField(default=False)
    bot_typing = models.BooleanField(default=False)

    def __str__(self):
        return f"Chat #{self.id} {self.user_name} ({self.unit})"

    class Meta:
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["user", "admin_replied", "dismissed"], name="chat_open_thread_idx"),
        ]


class ChatMessage(models.Model):
    """Append-only message within a thread."""
    USER = "user"
    BOT = "bot"
    ADMIN = "admin"
    SENDER_CHOICES = [(USER, "User"), (BOT, "Bot"), (ADMIN, "Admin")]

    thread = models.ForeignKey(ChatThread, on_delete=models.CASCADE, related_name="messages")
    sender = models.CharField(max_length=10, choices=SENDER_CHOICES)
    text = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"[{self.sender}] {self.text[:40]}"


# ---------------------------------------------------------------------------
# 7. AUDIT TRAIL
# ---------------------------------------------------------------------------

class AuditLog(TimeStampedModel):
    """
    Immutable log of every significant action in the system.
    Feeds the dashboard activity panel.
    """
    ACTION_TYPES = [
        ("CREATE", "Created"),
        ("UPDATE", "Updated"),
        ("DELETE", "Deleted"),
        ("LOGIN", "Login"),
        ("LOGOUT", "Logout"),
        ("APPROVE", "Approved"),
        ("REJECT", "Rejected"),
        ("CHECKIN", "Checked In"),
        ("CHECKOUT", "Checked Out"),
        ("CHAT", "Chat"),
        ("IMPORT", "Data Imported"),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=30, choices=ACTION_TYPES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100, blank=True)
    description = models.TextField()
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["model_name", "object_id"], name="audit_model_object_idx"),
        ]

    def __str__(self):
        return f"{self.action} by {self.user} on {self.model_name}:{self.object_id}"
