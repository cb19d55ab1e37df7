"""
Tests for the content-addressed store.

Covers:
- CID derivation format and determinism
- put/get/delete round trips
- Metadata merge and search
- Failure propagation on delete
"""

import pytest
from unittest.mock import AsyncMock

from meshsim.content_store import ContentStore, byte_length, derive_cid, strict_equals
from meshsim.errors import BackendUnavailable, ContentNotFoundError


class TestDeriveCid:

    def test_format(self):
        cid = derive_cid("hello")
        assert cid.startswith("Qm")
        assert len(cid) == 46
        assert all(c in "0123456789abcdef" for c in cid[2:])

    def test_known_value(self):
        assert derive_cid("hello") == "Qm" + "5e918d2".rjust(44, "0")

    def test_empty_string(self):
        assert derive_cid("") == "Qm" + "0" * 44

    def test_most_negative_hash(self):
        """A hash of -2**31 renders as its absolute value."""
        assert derive_cid("polygenelubricants") == "Qm" + "80000000".rjust(44, "0")

    def test_deterministic(self):
        assert derive_cid("same text") == derive_cid("same text")
        assert derive_cid("same text") != derive_cid("other text")

    def test_non_bmp_characters(self):
        """Characters outside the BMP hash as two UTF-16 code units."""
        cid = derive_cid("rocket \U0001F680")
        assert len(cid) == 46
        assert cid == derive_cid("rocket \U0001F680")


class TestByteLength:

    def test_ascii(self):
        assert byte_length("hello") == 5

    def test_multibyte(self):
        assert byte_length("héllo") == 6
        assert byte_length("\U0001F680") == 4


class TestContentStore:

    @pytest.mark.asyncio
    async def test_put_get_roundtrip(self, content_store):
        cid = await content_store.put("hello")

        assert cid == derive_cid("hello")
        assert await content_store.get(cid) == "hello"

    @pytest.mark.asyncio
    async def test_record_fields(self, content_store):
        cid = await content_store.put("héllo", {"type": "greeting"}, content_type="text/markdown")
        record = await content_store.get_record(cid)

        assert record.size == 6
        assert record.type == "text/markdown"
        assert record.metadata == {"type": "greeting"}
        assert record.timestamp > 0

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, content_store):
        with pytest.raises(ContentNotFoundError) as exc_info:
            await content_store.get("Qm" + "f" * 44)
        assert exc_info.value.cid == "Qm" + "f" * 44

    @pytest.mark.asyncio
    async def test_same_content_overwrites(self, content_store):
        first = await content_store.put("dup", {"version": 1})
        second = await content_store.put("dup", {"version": 2})

        assert first == second
        assert await content_store.list_ids() == [first]
        assert (await content_store.get_record(first)).metadata == {"version": 2}

    @pytest.mark.asyncio
    async def test_delete_then_get_raises(self, content_store):
        cid = await content_store.put("temporary")

        assert await content_store.delete(cid) is True
        with pytest.raises(ContentNotFoundError):
            await content_store.get(cid)

    @pytest.mark.asyncio
    async def test_delete_propagates_backend_failure(self):
        persistence = AsyncMock()
        persistence.delete.side_effect = BackendUnavailable("disk gone")
        store = ContentStore(persistence)

        with pytest.raises(BackendUnavailable):
            await store.delete("Qm1")

    @pytest.mark.asyncio
    async def test_get_info_excludes_content(self, content_store):
        cid = await content_store.put("body text", {"k": "v"})
        info = await content_store.get_info(cid)

        assert "content" not in info
        assert info["cid"] == cid
        assert info["size"] == len("body text")
        assert await content_store.get_info("QmMissing") is None

    @pytest.mark.asyncio
    async def test_list_all(self, content_store):
        await content_store.put("one")
        await content_store.put("two")

        contents = sorted(r.content for r in await content_store.list_all())
        assert contents == ["one", "two"]


class TestMetadata:

    @pytest.mark.asyncio
    async def test_update_merges_shallowly(self, content_store):
        cid = await content_store.put("doc", {"a": 1})

        assert await content_store.update_metadata(cid, {"a": 2, "b": 3}) is True
        assert (await content_store.get_record(cid)).metadata == {"a": 2, "b": 3}

    @pytest.mark.asyncio
    async def test_update_without_existing_metadata(self, content_store):
        cid = await content_store.put("doc")

        await content_store.update_metadata(cid, {"processed": True})
        assert (await content_store.get_record(cid)).metadata == {"processed": True}

    @pytest.mark.asyncio
    async def test_update_missing_returns_false(self, content_store):
        assert await content_store.update_metadata("QmMissing", {"a": 1}) is False
        assert await content_store.list_ids() == []


class TestSearch:

    @pytest.mark.asyncio
    async def test_matches_every_key(self, content_store):
        q1 = await content_store.put("q1", {"type": "query", "processed": True})
        await content_store.put("q2", {"type": "query", "processed": False})
        await content_store.put("r1", {"type": "response"})
        await content_store.put("bare")

        results = await content_store.search({"type": "query", "processed": True})
        assert [r.cid for r in results] == [q1]

    @pytest.mark.asyncio
    async def test_missing_key_does_not_match(self, content_store):
        await content_store.put("r1", {"type": "response"})

        assert await content_store.search({"queryId": "Qm1"}) == []

    @pytest.mark.asyncio
    async def test_empty_query_matches_records_with_metadata(self, content_store):
        await content_store.put("with", {"k": 1})
        await content_store.put("without")

        results = await content_store.search({})
        assert [r.content for r in results] == ["with"]

    @pytest.mark.asyncio
    async def test_empty_metadata_matches_empty_query(self, content_store):
        empty = await content_store.put("empty", {})
        await content_store.put("without")

        results = await content_store.search({})
        assert [r.cid for r in results] == [empty]

    @pytest.mark.asyncio
    async def test_bool_does_not_match_int(self, content_store):
        flagged = await content_store.put("flagged", {"flag": True})
        counted = await content_store.put("counted", {"flag": 1})

        assert [r.cid for r in await content_store.search({"flag": True})] == [flagged]
        assert [r.cid for r in await content_store.search({"flag": 1})] == [counted]

    @pytest.mark.asyncio
    async def test_string_does_not_match_number(self, content_store):
        await content_store.put("numeric", {"rank": 1})

        assert await content_store.search({"rank": "1"}) == []


class TestStrictEquals:

    @pytest.mark.parametrize("a, b, expected", [
        (True, True, True),
        (True, 1, False),
        (0, False, False),
        (1, 1.0, True),
        ("1", 1, False),
        (None, None, True),
        (None, 0, False),
        ([1, 2], [1, 2], True),
    ])
    def test_pairs(self, a, b, expected):
        assert strict_equals(a, b) is expected
