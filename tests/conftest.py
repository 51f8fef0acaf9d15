from typing import Generator

import pytest
from fastapi.testclient import TestClient

from kinsync.api import create_app
from kinsync.config import settings
from kinsync.sync.claims import FileClaimRegistry
from kinsync.sync.orchestrator import SyncOrchestrator
from tests.fakes import InMemoryNoteStore, make_note
from tests.fakes.vault import ALICE, ALICE_UID, BOB, BOB_UID, CAROL


@pytest.fixture
def contact_notes() -> dict[str, str]:
    return {
        ALICE: make_note({"UID": ALICE_UID, "FN": "Alice Smith", "GENDER": "F"}, "# Alice\n"),
        BOB: make_note({"UID": BOB_UID, "FN": "Bob Smith"}, "# Bob\n"),
        CAROL: make_note({"N.GN": "Carol", "N.FN": "Jones"}, "Met at work.\n"),
    }


@pytest.fixture
def store(contact_notes: dict[str, str]) -> InMemoryNoteStore:
    return InMemoryNoteStore(contact_notes)


@pytest.fixture
def claims() -> FileClaimRegistry:
    return FileClaimRegistry()


@pytest.fixture
def notices() -> list[str]:
    return []


@pytest.fixture
def orchestrator(
    store: InMemoryNoteStore, claims: FileClaimRegistry, notices: list[str]
) -> SyncOrchestrator:
    return SyncOrchestrator(
        store=store,
        debounce_seconds=0.05,
        claims=claims,
        notify=notices.append,
    )


@pytest.fixture
def auth() -> tuple[str, str]:
    return settings.auth_username, settings.auth_password


@pytest.fixture
def test_client(orchestrator: SyncOrchestrator) -> Generator[TestClient, None, None]:
    app = create_app(orchestrator=orchestrator)
    with TestClient(app) as client:
        yield client
