import asyncio
from types import SimpleNamespace

import pytest

from controller import CardController
from db import CardStore
from errors import ExtractionError, MissingCredential

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

JANE = {
    "name": "Jane Doe",
    "company": "Acme",
    "phone": [],
    "email": [],
    "website": None,
    "description": None,
    "tags": ["sales"],
}


class FakeExtractor:
    """Stands in for CardExtractor; never touches the network."""

    def __init__(self, result=None, error=None, valid_keys=("sk-good",)):
        self.result = result if result is not None else dict(JANE)
        self.error = error
        self.valid_keys = set(valid_keys)
        self.calls = []
        self.release = None  # asyncio.Event を入れると抽出が待機する

    async def extract(self, image_uri, credential):
        if not credential:
            raise MissingCredential()
        self.calls.append((image_uri, credential))
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise ExtractionError(self.error)
        return self.result

    async def validate_credential(self, candidate):
        return candidate in self.valid_keys


class FakeMirror:
    def __init__(self, store=None, fail=False):
        self.store = store
        self.fail = fail
        self.pushed = []
        self.seen_syncing = []

    async def push(self, card):
        await asyncio.sleep(0)
        if self.store is not None:
            self.seen_syncing.append(self.store.get(card["id"])["is_syncing"])
        if self.fail:
            raise ConnectionError("sheets unavailable")
        self.pushed.append(card["id"])


@pytest.fixture
def store(tmp_path):
    return CardStore(str(tmp_path / "cards.db"))


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def controller(store, extractor, notifications):
    store.set_credential("sk-good")
    return CardController(store, extractor, notify=notifications.append, undo_window=4.0)


def kinds(notifications):
    return [n.kind for n in notifications]


def stub_client_factory(content=None, error=None):
    """Build an AsyncOpenAI replacement whose completions return ``content``."""
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    def factory(api_key, max_retries=2):
        calls.append({"api_key": api_key})
        return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    factory.calls = calls
    return factory
