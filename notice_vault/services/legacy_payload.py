"""
Legacy IPFS payload parser
===========================
Decrypted legacy IPFS blobs are JSON objects written by several historical
client versions. Each version put the alert thumbnail and the full
document under different keys:

  flat-v1   {"thumbnail": <data url>, "document": <data url>}
  flat-v2   {"thumbnailUrl": ..., "fullDocument" | "documentUrl": ...}
  array-v3  {"documents": [{"data" | "url": <data url>, "name", "type"}]}

Some payloads mix versions, so assets are collected in one fixed priority
order: thumbnail from thumbnail > thumbnailUrl, document from
document > fullDocument > documentUrl, then every array entry (entry 0
becomes the thumbnail when none was found yet). Values that are not
``data:`` URLs are ignored.
"""

from __future__ import annotations

import base64
import binascii
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_MIME = "image/png"

THUMBNAIL_KEYS = (("thumbnail", "flat-v1"), ("thumbnailUrl", "flat-v2"))
DOCUMENT_KEYS = (("document", "flat-v1"), ("fullDocument", "flat-v2"), ("documentUrl", "flat-v2"))
ARRAY_KEY = "documents"


class PayloadShape(str, enum.Enum):
    flat_v1 = "flat-v1"
    flat_v2 = "flat-v2"
    array_v3 = "array-v3"
    unknown = "unknown"


@dataclass(frozen=True)
class DataUrl:
    mime_type: str
    data: bytes


@dataclass(frozen=True)
class RecoveredAsset:
    kind: str                    # "thumbnail" | "document"
    content: DataUrl
    name: Optional[str]
    source: str                  # key (or documents[i]) it came from


@dataclass(frozen=True)
class LegacyPayload:
    shape: PayloadShape          # version of the first key that yielded an asset
    assets: tuple[RecoveredAsset, ...]

    @property
    def thumbnail(self) -> Optional[RecoveredAsset]:
        return next((a for a in self.assets if a.kind == "thumbnail"), None)

    @property
    def documents(self) -> list[RecoveredAsset]:
        return [a for a in self.assets if a.kind == "document"]


def decode_data_url(value: Any) -> Optional[DataUrl]:
    """Decode ``data:<mime>;base64,<payload>``; anything else yields None."""
    if not isinstance(value, str) or not value.startswith("data:") or "," not in value:
        return None
    header, _, encoded = value.partition(",")
    mime = header[len("data:"):].split(";", 1)[0] or DEFAULT_MIME
    try:
        data = base64.b64decode(encoded)
    except (binascii.Error, ValueError) as exc:
        logger.warning("Skipping undecodable data URL (%s): %s", mime, exc)
        return None
    return DataUrl(mime_type=mime, data=data)


def _first_present(obj: dict, keys) -> Optional[tuple[str, str, Any]]:
    for key, version in keys:
        if obj.get(key):
            return key, version, obj[key]
    return None


def parse_legacy_payload(obj: Any) -> LegacyPayload:
    """Select the payload variant(s) present in *obj* and extract its assets."""
    if not isinstance(obj, dict):
        return LegacyPayload(shape=PayloadShape.unknown, assets=())

    assets: list[RecoveredAsset] = []
    shape: Optional[PayloadShape] = None
    have_thumbnail = False

    for kind, keys in (("thumbnail", THUMBNAIL_KEYS), ("document", DOCUMENT_KEYS)):
        found = _first_present(obj, keys)
        if found is None:
            continue
        key, version, value = found
        content = decode_data_url(value)
        if content is None:
            continue
        assets.append(RecoveredAsset(kind=kind, content=content, name=None, source=key))
        shape = shape or PayloadShape(version)
        have_thumbnail = have_thumbnail or kind == "thumbnail"

    entries = obj.get(ARRAY_KEY)
    if isinstance(entries, list):
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            content = decode_data_url(entry.get("data") or entry.get("url"))
            if content is None:
                continue
            kind = "thumbnail" if index == 0 and not have_thumbnail else "document"
            if entry.get("type"):
                content = DataUrl(mime_type=entry["type"], data=content.data)
            assets.append(
                RecoveredAsset(
                    kind=kind,
                    content=content,
                    name=entry.get("name"),
                    source=f"{ARRAY_KEY}[{index}]",
                )
            )
            shape = shape or PayloadShape.array_v3
            have_thumbnail = have_thumbnail or kind == "thumbnail"

    return LegacyPayload(shape=shape or PayloadShape.unknown, assets=tuple(assets))
