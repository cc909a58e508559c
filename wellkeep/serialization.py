"""
Collection (de)serialization.

A collection is stored under one key as a compact JSON array of objects.
Repositories, the migration engine and the restore path all go through
these two functions so that identical documents always produce identical
bytes.
"""

import json

from .errors import CorruptionError


def encode_collection(docs: list[dict]) -> bytes:
    """Serialize a list of documents to the stored form."""
    return json.dumps(docs, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_collection(raw: bytes, key: str) -> list[dict]:
    """
    Parse a stored collection.

    Raises:
        CorruptionError: If the value is not a JSON array
    """
    try:
        docs = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptionError(key, f"not valid JSON ({e})") from e
    if not isinstance(docs, list):
        raise CorruptionError(key, f"expected a JSON array, got {type(docs).__name__}")
    return docs
