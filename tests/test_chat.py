import pytest

from visitor_desk import chat, services
from visitor_desk.exceptions import ChatLocked, RoleNotPermitted, ValidationFailed
from visitor_desk.models import ChatMessage, ChatThread

pytestmark = pytest.mark.django_db


def senders(thread):
    return list(thread.messages.order_by("id").values_list("sender", flat=True))


def test_start_thread_records_query_and_bot_reply(resident, assistant):
    thread = chat.start_thread(resident, "Jane Doe", "a-101", "Is my parcel here?")

    assert thread.unit == "A-101"
    assert thread.user == resident
    assert thread.bot_typing is False
    assert senders(thread) == [ChatMessage.USER, ChatMessage.BOT]
    assert thread.messages.last().text == assistant.reply

    conversation = assistant.created[0]
    assert conversation.system_instruction == chat.SYSTEM_INSTRUCTION
    assert conversation.history == []
    prompt = conversation.sent[0]
    assert prompt.startswith("CONTEXT:\n")
    assert prompt.endswith("USER'S INITIAL QUERY:\nIs my parcel here?")


def test_start_thread_context_only_lists_visitors_the_user_may_see(resident, make_visitor, assistant):
    make_visitor("NEIGHBOUR GUEST", "B", "203")
    make_visitor("MY GUEST", "A", "101")

    chat.start_thread(resident, "Jane", "A-101", "Who is visiting me?")

    prompt = assistant.created[0].sent[0]
    assert "MY GUEST" in prompt
    assert "NEIGHBOUR GUEST" not in prompt


def test_start_thread_requires_every_field(resident):
    with pytest.raises(ValidationFailed):
        chat.start_thread(resident, "Jane", "", "Hello")
    assert ChatThread.objects.count() == 0


def test_assistant_failure_degrades_to_apology(resident, new_assistant):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello?",
                               assistant=new_assistant(fail=True))

    assert thread.messages.last().text == chat.START_APOLOGY
    assert thread.bot_typing is False

    thread = chat.user_reply(resident, thread.id, "Still there?",
                             assistant=new_assistant(fail=True))
    assert thread.messages.last().text == chat.REPLY_APOLOGY


def test_user_reply_continues_the_same_conversation(resident, assistant):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")

    thread = chat.user_reply(resident, thread.id, "  Any visitors today?  ")

    assert len(assistant.created) == 1
    assert assistant.created[0].sent[-1] == "Any visitors today?"
    assert senders(thread) == ["user", "bot", "user", "bot"]


def test_lost_conversation_is_rebuilt_from_history(resident, new_assistant):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")
    fresh = new_assistant(reply="Back again.")

    chat.user_reply(resident, thread.id, "Follow-up", assistant=fresh)

    history = fresh.created[0].history
    assert [item["role"] for item in history] == ["user", "model"]
    assert history[0]["parts"] == ["Hello"]


def test_empty_reply_is_refused(resident):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")

    with pytest.raises(ValidationFailed):
        chat.user_reply(resident, thread.id, "   ")


def test_only_the_owner_may_reply(resident, other_resident):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")

    with pytest.raises(RoleNotPermitted):
        chat.user_reply(other_resident, thread.id, "Hijack")
    assert thread.messages.count() == 2


def test_staff_reply_locks_thread_for_the_resident(resident, officer):
    thread = chat.start_thread(resident, "Jane", "A-101", "Please call me")
    assert services.active_thread_id(resident) == thread.id

    chat.admin_reply(officer, thread.id, "Calling you now.")
    thread.refresh_from_db()
    assert thread.admin_replied is True
    assert services.active_thread_id(resident) is None
    count = thread.messages.count()

    with pytest.raises(ChatLocked):
        chat.user_reply(resident, thread.id, "Thanks!")

    assert thread.messages.count() == count
    assert senders(thread)[-1] == ChatMessage.ADMIN


def test_security_cannot_answer_chats(resident, security):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")

    with pytest.raises(RoleNotPermitted):
        chat.admin_reply(security, thread.id, "Hi")
    thread.refresh_from_db()
    assert thread.admin_replied is False


def test_dismiss_hides_thread_from_notifications(resident, officer):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")
    assert list(chat.staff_notifications(officer)) == [thread]

    chat.dismiss(officer, thread.id)
    chat.dismiss(officer, thread.id)

    assert list(chat.staff_notifications(officer)) == []
    assert services.active_thread_id(resident) is None


def test_resident_cannot_dismiss_or_list_notifications(resident):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")

    with pytest.raises(RoleNotPermitted):
        chat.dismiss(resident, thread.id)
    with pytest.raises(RoleNotPermitted):
        chat.staff_notifications(resident)


def test_active_thread_is_the_newest_open_one(resident, officer):
    older = chat.start_thread(resident, "Jane", "A-101", "First")
    newer = chat.start_thread(resident, "Jane", "A-101", "Second")
    assert services.active_thread_id(resident) == newer.id

    chat.admin_reply(officer, newer.id, "Answered")
    assert services.active_thread_id(resident) == older.id


def test_staff_never_have_an_active_thread(officer):
    chat.start_thread(officer, "Olive", "OFFICE", "Test")
    assert services.active_thread_id(officer) is None


def test_get_thread_visibility(resident, other_resident, officer):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")

    assert chat.get_thread(resident, thread.id) == thread
    assert chat.get_thread(officer, thread.id) == thread
    with pytest.raises(RoleNotPermitted) as excinfo:
        chat.get_thread(other_resident, thread.id)
    assert excinfo.value.message == "You can only view chats you started."


def test_security_cannot_open_a_residents_thread(resident, security):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")

    with pytest.raises(RoleNotPermitted) as excinfo:
        chat.get_thread(security, thread.id)
    assert excinfo.value.message == "You can only view chats you started."
    assert excinfo.value.details()["operation"] == "chat.view"


class BlockedResponse:
    @property
    def text(self):
        raise ValueError("The response was blocked by the safety filters.")


class BlockedConversation:
    def send_message(self, message):
        return BlockedResponse()


class BlockedModel:
    def __init__(self, model_name, system_instruction=None):
        self.model_name = model_name

    def start_chat(self, history=None):
        return BlockedConversation()


class BrokenModel:
    def __init__(self, model_name, system_instruction=None):
        raise RuntimeError("unknown model")


@pytest.fixture
def gemini_assistant(monkeypatch):
    monkeypatch.setattr(chat.genai, "configure", lambda **kwargs: None)
    return chat.ChatAssistant(api_key="test-key", model_name="gemini-test")


def test_blocked_gemini_reply_degrades_to_apology(resident, gemini_assistant, monkeypatch):
    monkeypatch.setattr(chat.genai, "GenerativeModel", BlockedModel)

    thread = chat.start_thread(resident, "Jane", "A-101", "Hello?", assistant=gemini_assistant)

    assert thread.bot_typing is False
    assert senders(thread) == [ChatMessage.USER, ChatMessage.BOT]
    assert thread.messages.last().text == chat.START_APOLOGY

    thread = chat.user_reply(resident, thread.id, "Anyone?", assistant=gemini_assistant)
    assert thread.bot_typing is False
    assert thread.messages.last().text == chat.REPLY_APOLOGY


def test_gemini_session_failure_degrades_to_apology(resident, gemini_assistant, monkeypatch):
    monkeypatch.setattr(chat.genai, "GenerativeModel", BrokenModel)

    thread = chat.start_thread(resident, "Jane", "A-101", "Hello?", assistant=gemini_assistant)

    assert thread.bot_typing is False
    assert thread.messages.last().text == chat.START_APOLOGY


def test_missing_api_key_degrades_to_apology(resident):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello?",
                               assistant=chat.ChatAssistant(api_key="", model_name="gemini-test"))

    assert thread.bot_typing is False
    assert thread.messages.last().text == chat.START_APOLOGY


def test_staff_reply_drops_cached_conversation(resident, officer, assistant):
    thread = chat.start_thread(resident, "Jane", "A-101", "Please call me")
    assert assistant.conversation_for(thread.id) is not None

    chat.admin_reply(officer, thread.id, "Calling you now.")

    assert assistant.conversation_for(thread.id) is None


def test_dismiss_drops_cached_conversation(resident, officer, assistant):
    thread = chat.start_thread(resident, "Jane", "A-101", "Hello")

    chat.dismiss(officer, thread.id)

    assert assistant.conversation_for(thread.id) is None


def test_assistant_forgets_conversations():
    assistant = chat.ChatAssistant(api_key="", model_name="gemini-test")
    assistant.remember(7, object())

    assistant.forget(7)
    assistant.forget(7)

    assert assistant.conversation_for(7) is None
