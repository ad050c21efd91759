"""
Shared fixtures for the worksheet persistence tests.
"""

import asyncio

import pytest

from worksheet_vault.core.codec import DocumentCodec
from worksheet_vault.core.crypto import AesGcmFieldCipher, IFieldCipher
from worksheet_vault.core.dao import InMemoryRecordStore
from worksheet_vault.core.errors import CipherError
from worksheet_vault.core.gateway import PersistenceGateway
from worksheet_vault.core.privacy import FieldClassifier
from worksheet_vault.core.schema import RecordKey

TEST_KEY = bytes(range(32))


class ReversingCipher(IFieldCipher):
    """Deterministic stand-in cipher: "rev:" + reversed text."""

    PREFIX = "rev:"

    def __init__(self):
        self.encrypt_calls = 0
        self.decrypt_calls = 0

    async def encrypt(self, plaintext: str) -> str:
        self.encrypt_calls += 1
        return self.PREFIX + plaintext[::-1]

    async def decrypt(self, ciphertext: str) -> str:
        self.decrypt_calls += 1
        if not ciphertext.startswith(self.PREFIX):
            raise CipherError("not ciphertext")
        return ciphertext[len(self.PREFIX):][::-1]


class BrokenCipher(ReversingCipher):
    """Cipher whose encrypt always fails."""

    async def encrypt(self, plaintext: str) -> str:
        self.encrypt_calls += 1
        raise CipherError("key unavailable")


class SlowStore(InMemoryRecordStore):
    """In-memory store whose upsert takes `delay` seconds."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def upsert(self, owner_id, group_key, record_key, document, completed=False, completed_at=None):
        await asyncio.sleep(self.delay)
        return await super().upsert(owner_id, group_key, record_key, document, completed, completed_at)


class SlowReadStore(InMemoryRecordStore):
    """In-memory store whose get takes `delay` seconds."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def get(self, owner_id, group_key, record_key):
        record = await super().get(owner_id, group_key, record_key)
        await asyncio.sleep(self.delay)
        return record


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FailingStore(InMemoryRecordStore):
    """In-memory store whose upsert raises until `failures` is exhausted."""

    def __init__(self, error: Exception, failures: int = 1):
        super().__init__()
        self.error = error
        self.failures = failures

    async def upsert(self, owner_id, group_key, record_key, document, completed=False, completed_at=None):
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        return await super().upsert(owner_id, group_key, record_key, document, completed, completed_at)


@pytest.fixture
def classifier():
    return FieldClassifier()


@pytest.fixture
def cipher():
    return ReversingCipher()


@pytest.fixture
def aes_cipher():
    return AesGcmFieldCipher(key=TEST_KEY)


@pytest.fixture
def codec(cipher, classifier):
    return DocumentCodec(cipher, classifier)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def gateway(store, codec):
    return PersistenceGateway(store, codec, write_timeout=1.0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def record_key():
    return RecordKey("user-1", 1, "values-inventory")
