"""
Content-addressed store over the persistence layer.

Content is keyed by a CID-like identifier derived from the content alone.
The hash is a toy 32-bit rolling hash: deterministic, not cryptographic, and
collisions are possible by construction. Storing identical content twice
overwrites the earlier record under the same key.
"""

import logging
from typing import Any, Dict, List, Optional

from .errors import ContentNotFoundError
from .models import ContentRecord
from .persistence import Persistence

logger = logging.getLogger(__name__)

CID_PREFIX = "Qm"
CID_HEX_LENGTH = 44


def derive_cid(content: str) -> str:
    """
    Derive a content identifier from a string.

    Rolling hash h = h * 31 + code over UTF-16 code units, wrapped to a signed
    32-bit integer after every step. The absolute value is rendered in hex,
    left-padded to 44 characters and prefixed with "Qm".

    Example:
        >>> derive_cid("")
        'Qm00000000000000000000000000000000000000000000'
    """
    h = 0
    data = content.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        code = data[i] | (data[i + 1] << 8)
        h = (h * 31 + code) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return CID_PREFIX + format(abs(h), "x").rjust(CID_HEX_LENGTH, "0")


def byte_length(content: str) -> int:
    """UTF-8 size of content; lone surrogates count as a replacement character."""
    return len(content.encode("utf-8", errors="surrogatepass"))


def strict_equals(a: Any, b: Any) -> bool:
    """Equality without cross-type coercion: True never equals 1, "1" never equals 1."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


class ContentStore:
    """
    Store, retrieve, list and search content records by CID.

    Usage:
        store = ContentStore(persistence)
        cid = await store.put("hello", {"type": "greeting"})
        assert await store.get(cid) == "hello"
    """

    COLLECTION = "content"

    def __init__(self, persistence: Persistence):
        self.persistence = persistence

    async def put(self,
                  content: str,
                  metadata: Optional[Dict[str, Any]] = None,
                  content_type: str = "text/plain") -> str:
        """
        Store content under its derived CID.

        Args:
            content: The content string
            metadata: Optional free-form metadata
            content_type: MIME-like type tag

        Returns:
            cid: The content identifier
        """
        cid = derive_cid(content)
        record = ContentRecord(
            cid=cid,
            content=content,
            size=byte_length(content),
            type=content_type,
            metadata=dict(metadata) if metadata is not None else None,
        )
        await self.persistence.upsert(self.COLLECTION, record.to_dict())
        logger.debug(f"Content added with CID: {cid}")
        return cid

    async def get_record(self, cid: str) -> Optional[ContentRecord]:
        data = await self.persistence.fetch(self.COLLECTION, cid)
        return ContentRecord.from_dict(data) if data else None

    async def get(self, cid: str) -> str:
        """
        Retrieve content by CID.

        Raises:
            ContentNotFoundError: If no record exists for cid
        """
        record = await self.get_record(cid)
        if record is None:
            raise ContentNotFoundError(cid)
        logger.debug(f"Content retrieved for CID: {cid}")
        return record.content

    async def get_info(self, cid: str) -> Optional[Dict[str, Any]]:
        """Record fields without the content body, or None if absent."""
        record = await self.get_record(cid)
        return record.info() if record else None

    async def delete(self, cid: str) -> bool:
        """Delete content by CID. Backend failures propagate."""
        try:
            await self.persistence.delete(self.COLLECTION, cid)
        except Exception as e:
            logger.error(f"Error deleting content with CID: {cid}: {e}")
            raise
        logger.debug(f"Content deleted for CID: {cid}")
        return True

    async def list_ids(self) -> List[str]:
        return [record.cid for record in await self.list_all()]

    async def list_all(self) -> List[ContentRecord]:
        records = await self.persistence.fetch_all(self.COLLECTION)
        return [ContentRecord.from_dict(r) for r in records]

    async def update_metadata(self, cid: str, patch: Dict[str, Any]) -> bool:
        """
        Shallow-merge patch into a record's metadata; patch keys win.

        Returns:
            True if updated, False if no record exists for cid
        """
        record = await self.get_record(cid)
        if record is None:
            return False
        record.metadata = {**(record.metadata or {}), **patch}
        await self.persistence.upsert(self.COLLECTION, record.to_dict())
        return True

    async def search(self, query: Dict[str, Any]) -> List[ContentRecord]:
        """
        Records whose metadata strictly equals query on every query key.

        Records without metadata never match; an empty query matches every
        record that has a metadata mapping, even an empty one. Values of
        different types never match, except int and float which compare by
        value. No partial or range matching.
        """
        matches = []
        for record in await self.list_all():
            if record.metadata is None:
                continue
            if all(key in record.metadata and strict_equals(record.metadata[key], value)
                   for key, value in query.items()):
                matches.append(record)
        return matches


__all__ = ["derive_cid", "byte_length", "strict_equals", "ContentStore", "CID_PREFIX"]
