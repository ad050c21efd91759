"""
Recursive document codec - encrypts sensitive string leaves on write, decrypts them on read.
Structure, key names and non-sensitive values are never changed.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from util.logging import logger

from .config import ENCRYPT_FAILURE_POLICY
from .crypto import IFieldCipher
from .errors import CipherError, CodecError
from .privacy import FieldClassifier, get_classifier


class EncryptFailurePolicy(str, Enum):
    """What to do when the cipher fails to encrypt a sensitive field."""
    FALLBACK = "fallback"  # keep plaintext for that field, log it
    RAISE = "raise"        # abort the encode with CodecError


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


class DocumentCodec:
    """
    Applies the field cipher to every sensitive string leaf of a JSON-like document.

    Traversal rules for each key/value pair of a mapping:
    - None passes through
    - str under a sensitive key is transformed, other str values pass through
    - dict values are recursed into regardless of their own key
    - list values are recursed element-wise for dict elements only; scalar
      elements (strings included) are never transformed since they have no field name
    - everything else (int, float, bool) passes through

    Input documents are never mutated; a new structure is returned.
    """

    def __init__(self, cipher: IFieldCipher, classifier: Optional[FieldClassifier] = None,
                 encrypt_failure_policy: Optional[EncryptFailurePolicy] = None):
        self.cipher = cipher
        self.classifier = classifier or get_classifier()
        self.encrypt_failure_policy = EncryptFailurePolicy(encrypt_failure_policy or ENCRYPT_FAILURE_POLICY)

    async def encode(self, document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Encrypt sensitive fields. Failures follow encrypt_failure_policy."""
        if document is None:
            return None
        return await self._walk_mapping(document, self._encode_leaf, "")

    async def decode(self, document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Decrypt sensitive fields. Values that fail to decrypt are returned as stored."""
        if document is None:
            return None
        return await self._walk_mapping(document, self._decode_leaf, "")

    async def find_plaintext_fields(self, document: Optional[Dict[str, Any]]) -> List[str]:
        """
        List dotted paths of sensitive string fields that are stored in plaintext.

        A sensitive field is considered plaintext when it does not decrypt, which
        covers both legacy records and values written under the fallback policy.
        """
        found: List[str] = []
        if document is None:
            return found

        async def probe(value: str, path: str) -> str:
            try:
                await self.cipher.decrypt(value)
            except CipherError:
                found.append(path)
            return value

        await self._walk_mapping(document, probe, "")
        return found

    async def _walk_mapping(self, mapping: Dict[str, Any], leaf: Callable[[str, str], Awaitable[str]],
                            path: str) -> Dict[str, Any]:
        result = {}
        for key, value in mapping.items():
            field_path = _join(path, str(key))

            if value is None:
                result[key] = None
            elif isinstance(value, str):
                if self.classifier.is_sensitive(key):
                    result[key] = await leaf(value, field_path)
                else:
                    result[key] = value
            elif isinstance(value, dict):
                result[key] = await self._walk_mapping(value, leaf, field_path)
            elif isinstance(value, list):
                result[key] = await self._walk_list(value, leaf, field_path)
            else:
                result[key] = value
        return result

    async def _walk_list(self, items: List[Any], leaf: Callable[[str, str], Awaitable[str]],
                         path: str) -> List[Any]:
        result = []
        for index, item in enumerate(items):
            if isinstance(item, dict):
                result.append(await self._walk_mapping(item, leaf, f"{path}[{index}]"))
            else:
                result.append(item)
        return result

    async def _encode_leaf(self, value: str, path: str) -> str:
        try:
            return await self.cipher.encrypt(value)
        except Exception as e:
            if self.encrypt_failure_policy == EncryptFailurePolicy.RAISE:
                raise CodecError(path) from e
            logger.log_codec_fallback("encode", path, e)
            return value

    async def _decode_leaf(self, value: str, path: str) -> str:
        try:
            return await self.cipher.decrypt(value)
        except Exception as e:
            # Legacy records written before the field was classified hold plaintext
            logger.log_codec_fallback("decode", path, e)
            return value
