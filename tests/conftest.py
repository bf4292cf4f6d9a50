import pytest
from rest_framework.test import APIClient

from visitor_desk import chat, services
from visitor_desk.exceptions import CollaboratorFailure
from visitor_desk.models import Unit, User, Visitor


class FakeConversation:
    def __init__(self, system_instruction, history):
        self.system_instruction = system_instruction
        self.history = list(history or [])
        self.sent = []


class FakeAssistant:
    """Stands in for the Gemini-backed ChatAssistant."""

    def __init__(self, reply="Happy to help with that.", fail=False):
        self.reply = reply
        self.fail = fail
        self.created = []
        self.conversations = {}

    def create_conversation(self, system_instruction, history=None):
        conversation = FakeConversation(system_instruction, history)
        self.created.append(conversation)
        return conversation

    def send(self, conversation, message):
        conversation.sent.append(message)
        if self.fail:
            raise CollaboratorFailure("backend unreachable")
        return self.reply

    def conversation_for(self, thread_id):
        return self.conversations.get(thread_id)

    def remember(self, thread_id, conversation):
        self.conversations[thread_id] = conversation

    def forget(self, thread_id):
        self.conversations.pop(thread_id, None)


def make_user(username, role, unit_no="", password="secret"):
    user = User(username=username, role=role, unit_no=unit_no)
    user.set_password(password)
    user.save()
    return user


@pytest.fixture(autouse=True)
def assistant():
    fake = FakeAssistant()
    chat.set_assistant(fake)
    yield fake
    chat.set_assistant(None)


@pytest.fixture
def new_assistant():
    """Build a separate fake, e.g. one whose backend is down."""
    return FakeAssistant


@pytest.fixture
def desk_admin(db):
    return make_user("admin", User.ADMIN)


@pytest.fixture
def security(db):
    return make_user("security", User.SECURITY)


@pytest.fixture
def officer(db):
    return make_user("officer", User.OFFICER)


@pytest.fixture
def resident(db):
    return make_user("resident101", User.RESIDENT, unit_no="A-101")


@pytest.fixture
def other_resident(db):
    return make_user("resident203", User.RESIDENT, unit_no="B-203")


@pytest.fixture
def units(db):
    return [Unit.objects.create(block=b, house_no=h)
            for b, h in [("A", "101"), ("A", "102"), ("B", "203")]]


@pytest.fixture
def visitor_data():
    return {
        "name": "john doe",
        "contact": "555-0001",
        "purpose": "delivery",
        "block": "a",
        "house_no": "101",
        "vehicle": "abc 123",
        "car_brand": "honda",
    }


@pytest.fixture
def pending_visitor(security, units, visitor_data):
    return services.register_visitor(security, visitor_data)


@pytest.fixture
def make_visitor(units):
    def _make(name, block="A", house_no="101", status=Visitor.PENDING):
        return Visitor.objects.create(
            name=name, contact="555-9999", purpose="VISIT",
            block=block, house_no=house_no, resident=f"{block}-{house_no}",
            status=status,
        )
    return _make


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for():
    """APIClient carrying a fresh session token for `user`."""
    def _client(user, password="secret"):
        session = services.login(user.username, password)
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {session.key}")
        client.token = session.key
        return client
    return _client
