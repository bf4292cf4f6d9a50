"""
Support chat: thread routing between residents, staff and the ResiBot assistant.

A resident talks to the assistant until a staff member answers in the same
thread; from then on the thread is read-only for the resident. Staff see every
thread that has not been dismissed.
"""

import json
import logging
import threading

import google.generativeai as genai
from django.conf import settings
from django.db import transaction

from . import policy
from .exceptions import ChatLocked, CollaboratorFailure, ValidationFailed
from .models import ChatMessage, ChatThread
from .services import log_action, visible_visitors

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are ResiBot, a helpful AI assistant for the ResiGuard Visitor Management System. "
    "You assist both residents and staff. A user has initiated a chat. Their details and "
    "initial query are provided in the first message context. Your primary role is to be "
    "helpful and answer their questions based on the provided real-time system data which "
    "includes a list of visitors. If you are asked to perform an action (like pre-registering "
    "a visitor), state that you will assist and provide a structured summary of the request "
    "for confirmation. You can also answer questions about visitor statuses, counts, and "
    "details for specific residents. Always be professional, friendly, and concise."
)
START_APOLOGY = "Sorry, I'm having trouble connecting. Please try again later."
REPLY_APOLOGY = "Sorry, I'm having trouble connecting right now. Please try again later."


class ChatAssistant:
    """Thin wrapper over a Gemini chat session, one conversation per thread."""

    def __init__(self, api_key=None, model_name=None):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model_name = model_name or settings.GEMINI_MODEL
        self._conversations = {}
        self._lock = threading.Lock()
        if self.api_key:
            genai.configure(api_key=self.api_key)

    def create_conversation(self, system_instruction, history=None):
        if not self.api_key:
            raise CollaboratorFailure("Gemini API key not configured.")
        try:
            model = genai.GenerativeModel(self.model_name, system_instruction=system_instruction)
            return model.start_chat(history=history or [])
        except Exception as exc:
            raise CollaboratorFailure(f"Gemini session could not be opened: {exc}") from exc

    def send(self, conversation, message):
        # .text raises ValueError on blocked or empty candidates
        try:
            response = conversation.send_message(message)
            text = response.text
        except Exception as exc:
            raise CollaboratorFailure(f"Gemini request failed: {exc}") from exc
        return text or ""

    def conversation_for(self, thread_id):
        with self._lock:
            return self._conversations.get(thread_id)

    def remember(self, thread_id, conversation):
        with self._lock:
            self._conversations[thread_id] = conversation

    def forget(self, thread_id):
        with self._lock:
            self._conversations.pop(thread_id, None)


_assistant = None


def get_assistant():
    global _assistant
    if _assistant is None:
        _assistant = ChatAssistant()
    return _assistant


def set_assistant(assistant):
    """Swap the process-wide assistant (used by tests and management commands)."""
    global _assistant
    _assistant = assistant


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------

def staff_notifications(actor):
    policy.check(actor, "chat.notifications")
    return ChatThread.objects.filter(dismissed=False).prefetch_related("messages").order_by("-id")


def user_threads(actor):
    return ChatThread.objects.filter(user=actor).prefetch_related("messages").order_by("-id")


def get_thread(actor, thread_id):
    thread = ChatThread.objects.prefetch_related("messages").get(pk=thread_id)
    policy.check(actor, "chat.view", thread)
    return thread


# -----------------------------------------------------------------------------
# Operations
# -----------------------------------------------------------------------------

def _require_text(text, field="text"):
    text = (text or "").strip()
    if not text:
        raise ValidationFailed("Message cannot be empty.", "MissingField", field=field)
    return text


def _history(thread, exclude_last=True):
    messages = list(thread.messages.exclude(sender=ChatMessage.ADMIN).order_by("id"))
    if exclude_last and messages:
        messages = messages[:-1]
    return [{"role": "user" if m.sender == ChatMessage.USER else "model", "parts": [m.text]}
            for m in messages]


def _ask(assistant, thread, prompt, apology, fresh=False):
    try:
        conversation = None if fresh else assistant.conversation_for(thread.id)
        if conversation is None:
            history = [] if fresh else _history(thread)
            conversation = assistant.create_conversation(SYSTEM_INSTRUCTION, history=history)
            assistant.remember(thread.id, conversation)
        return assistant.send(conversation, prompt)
    except CollaboratorFailure as exc:
        logger.warning("Chat assistant unavailable for thread %s: %s", thread.id, exc.message)
        return apology


def _append_reply(thread_id, text):
    with transaction.atomic():
        thread = ChatThread.objects.select_for_update().get(pk=thread_id)
        ChatMessage.objects.create(thread=thread, sender=ChatMessage.BOT, text=text)
        thread.bot_typing = False
        thread.save(update_fields=["bot_typing", "updated_at"])
    return thread


def start_thread(actor, name, unit, initial_query, assistant=None):
    policy.check(actor, "chat.start")
    name = (name or "").strip()
    unit = (unit or "").strip().upper()
    initial_query = (initial_query or "").strip()
    if not (name and unit and initial_query):
        raise ValidationFailed("Please fill out all fields to start the chat.", "MissingField")
    assistant = assistant or get_assistant()

    with transaction.atomic():
        thread = ChatThread.objects.create(
            user=actor, user_name=name, unit=unit, initial_query=initial_query, bot_typing=True,
        )
        ChatMessage.objects.create(thread=thread, sender=ChatMessage.USER, text=initial_query)
        log_action(actor, "CHAT", "ChatThread", thread.id, f"{name} ({unit}) started a chat.")

    context = {
        "initiatingUser": {"name": name, "role": actor.get_role_display(), "unit": unit},
        "currentVisitorList": [
            {"name": v.name, "status": v.get_status_display(),
             "visiting": v.resident, "purpose": v.purpose}
            for v in visible_visitors(actor)
        ],
    }
    prompt = f"CONTEXT:\n{json.dumps(context, indent=2)}\n\nUSER'S INITIAL QUERY:\n{initial_query}"
    reply = _ask(assistant, thread, prompt, START_APOLOGY, fresh=True)
    return _append_reply(thread.id, reply)


def user_reply(actor, thread_id, text, assistant=None):
    text = _require_text(text)
    assistant = assistant or get_assistant()

    with transaction.atomic():
        thread = ChatThread.objects.select_for_update().get(pk=thread_id)
        policy.check(actor, "chat.user_reply", thread)
        if thread.admin_replied:
            raise ChatLocked("A staff member has replied. This chat is now read-only.")
        ChatMessage.objects.create(thread=thread, sender=ChatMessage.USER, text=text)
        thread.bot_typing = True
        thread.save(update_fields=["bot_typing", "updated_at"])

    reply = _ask(assistant, thread, text, REPLY_APOLOGY)
    return _append_reply(thread.id, reply)


def admin_reply(actor, thread_id, text, assistant=None):
    policy.check(actor, "chat.admin_reply")
    text = _require_text(text)

    with transaction.atomic():
        thread = ChatThread.objects.select_for_update().get(pk=thread_id)
        ChatMessage.objects.create(thread=thread, sender=ChatMessage.ADMIN, text=text)
        thread.admin_replied = True
        thread.save(update_fields=["admin_replied", "updated_at"])
        log_action(actor, "CHAT", "ChatThread", thread.id,
                   f"{actor.username} replied to {thread.user_name}.")
    # the resident can no longer talk to the assistant here
    (assistant or get_assistant()).forget(thread.id)
    return thread


def dismiss(actor, thread_id, assistant=None):
    policy.check(actor, "chat.dismiss")
    with transaction.atomic():
        thread = ChatThread.objects.select_for_update().get(pk=thread_id)
        if not thread.dismissed:
            thread.dismissed = True
            thread.save(update_fields=["dismissed", "updated_at"])
    (assistant or get_assistant()).forget(thread.id)
    return thread
