"""
Tests for the AES-256-GCM field cipher.
"""

import base64

import pytest

from worksheet_vault.core.crypto import CIPHERTEXT_PREFIX, AesGcmFieldCipher, is_ciphertext
from worksheet_vault.core.errors import CipherError


class TestAesGcmFieldCipher:

    async def test_encrypt_decrypt_round_trip(self, aes_cipher):
        ciphertext = await aes_cipher.encrypt("Today I wrote about my father")

        assert ciphertext.startswith(CIPHERTEXT_PREFIX)
        assert "father" not in ciphertext
        assert await aes_cipher.decrypt(ciphertext) == "Today I wrote about my father"

    async def test_unicode_and_empty_values(self, aes_cipher):
        for value in ["", "café ☕", "多语言"]:
            assert await aes_cipher.decrypt(await aes_cipher.encrypt(value)) == value

    async def test_nonce_makes_ciphertexts_differ(self, aes_cipher):
        first = await aes_cipher.encrypt("same")
        second = await aes_cipher.encrypt("same")

        assert first != second

    async def test_plaintext_is_rejected_on_decrypt(self, aes_cipher):
        with pytest.raises(CipherError):
            await aes_cipher.decrypt("just some legacy text")

    async def test_tampered_ciphertext_fails_authentication(self, aes_cipher):
        ciphertext = await aes_cipher.encrypt("secret")
        blob = bytearray(base64.b64decode(ciphertext[len(CIPHERTEXT_PREFIX):]))
        blob[-1] ^= 0x01
        tampered = CIPHERTEXT_PREFIX + base64.b64encode(bytes(blob)).decode("ascii")

        with pytest.raises(CipherError):
            await aes_cipher.decrypt(tampered)

    async def test_wrong_key_fails(self, aes_cipher):
        ciphertext = await aes_cipher.encrypt("secret")
        other = AesGcmFieldCipher(key=bytes(32))

        with pytest.raises(CipherError):
            await other.decrypt(ciphertext)

    async def test_malformed_payloads(self, aes_cipher):
        with pytest.raises(CipherError):
            await aes_cipher.decrypt(CIPHERTEXT_PREFIX + "not base64!!")
        with pytest.raises(CipherError):
            await aes_cipher.decrypt(CIPHERTEXT_PREFIX + base64.b64encode(b"short").decode("ascii"))

    async def test_non_string_encrypt_raises(self, aes_cipher):
        with pytest.raises(CipherError):
            await aes_cipher.encrypt(42)

    def test_key_length_is_checked(self):
        with pytest.raises(ValueError):
            AesGcmFieldCipher(key=b"too short")

    async def test_password_derivation_is_stable(self):
        first = AesGcmFieldCipher(password="pw", salt="salt")
        second = AesGcmFieldCipher(password="pw", salt="salt")

        assert await second.decrypt(await first.encrypt("hello")) == "hello"

    def test_is_ciphertext(self):
        assert is_ciphertext(CIPHERTEXT_PREFIX + "abc") is True
        assert is_ciphertext("abc") is False
        assert is_ciphertext(None) is False
