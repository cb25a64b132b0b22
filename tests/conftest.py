import pytest

from factories import FakeClock, FakeProvider, make_profile, make_user
from studymatch.settings import AISettings, SettingsStore
from studymatch.stores import (
    InMemoryConversationDirectory,
    InMemoryMatchStore,
    InMemoryNotificationSink,
    InMemoryProfileStore,
    InMemoryTelemetrySink,
    InMemoryUserDirectory,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def users():
    return InMemoryUserDirectory(
        [
            make_user("alice"),
            make_user("bob"),
            make_user("carol"),
            make_user("dave"),
            make_user("admin", admin=True),
        ]
    )


@pytest.fixture
def profiles():
    return InMemoryProfileStore(
        [
            make_profile("alice", subjects=["Math", "Physics"], style="visual", streak=5),
            make_profile("bob", subjects=["Physics", "Chemistry"], style="visual", streak=8),
            make_profile("carol", subjects=["Math"], times=["Evening"], style="auditory", goal="SAT", streak=20),
            make_profile("dave", subjects=["History"], streak=0),
            make_profile("admin", subjects=["Math"]),
        ]
    )


@pytest.fixture
def matches():
    return InMemoryMatchStore()


@pytest.fixture
def notifications():
    return InMemoryNotificationSink()


@pytest.fixture
def telemetry():
    return InMemoryTelemetrySink()


@pytest.fixture
def conversations():
    return InMemoryConversationDirectory()


@pytest.fixture
def ai_settings():
    return AISettings(api_key="test-key", ai_match_limit=10)


@pytest.fixture
def settings_store(ai_settings):
    return SettingsStore(ai_settings)
