"""Tests for the Redis embedding cache and query normalisation."""

import json

import pytest

from ragchat.src.core.errors import CacheDegraded
from ragchat.src.database.embedding_cache import RedisEmbeddingCache
from ragchat.src.utils.text_utils import normalize_query, preview, text_digest


class TestNormalizeQuery:
    """Tests for normalize_query."""

    def test_collapses_whitespace_and_strips(self):
        """Test whitespace runs, newlines included, become one space."""
        assert normalize_query("  What   is\n\tnew  in AI?  ") == "What is new in AI?"

    def test_removes_zero_width_characters(self):
        """Test invisible characters are dropped."""
        assert normalize_query("AI\u200b news\ufeff") == "AI news"

    def test_preserves_case(self):
        """Test that differently-cased queries stay distinct."""
        assert normalize_query("Apple") != normalize_query("apple")

    def test_empty_inputs(self):
        """Test None and whitespace-only input normalise to empty."""
        assert normalize_query(None) == ""
        assert normalize_query(" \n\t ") == ""

    def test_nfc_composition(self):
        """Test composed and decomposed forms normalise identically."""
        assert normalize_query("cafe\u0301") == normalize_query("caf\u00e9")

    def test_preview_truncates(self):
        """Test previews are single-line and bounded."""
        text = "word " * 40
        short = preview(text, limit=20)
        assert len(short) == 20
        assert short.endswith("…")
        assert "\n" not in preview("a\nb")


class TestRedisEmbeddingCache:
    """Tests for RedisEmbeddingCache."""

    @pytest.mark.asyncio
    async def test_miss_put_get(self, embedding_cache):
        """Test a miss, then a put, then a hit returning the same vector."""
        text = "latest developments in AI"
        assert await embedding_cache.get(text) is None

        await embedding_cache.put(text, [0.1, 0.2, 0.3])
        assert await embedding_cache.get(text) == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_default_ttl_applied(self, embedding_cache, fake_redis):
        """Test entries are stored with the configured expiry."""
        await embedding_cache.put("q", [1.0])
        assert fake_redis.ttls[embedding_cache.key_for("q")] == 86400

    @pytest.mark.asyncio
    async def test_explicit_ttl(self, embedding_cache, fake_redis):
        """Test a per-call ttl overrides the default."""
        await embedding_cache.put("q", [1.0], ttl=120)
        assert fake_redis.ttls[embedding_cache.key_for("q")] == 120

    @pytest.mark.asyncio
    async def test_zero_ttl_refused_not_defaulted(self, embedding_cache, fake_redis):
        """Test a zero ttl, per call or per cache, is an error rather than the default."""
        with pytest.raises(ValueError):
            await embedding_cache.put("q", [1.0], ttl=0)
        assert fake_redis.strings == {}

        with pytest.raises(ValueError):
            RedisEmbeddingCache(fake_redis, model_id="fake-embed", ttl_seconds=0)

    @pytest.mark.asyncio
    async def test_key_includes_model_identity(self, fake_redis):
        """Test vectors from one model are never served for another."""
        old = RedisEmbeddingCache(fake_redis, model_id="model-a", key_prefix="")
        new = RedisEmbeddingCache(fake_redis, model_id="model-b", key_prefix="")

        await old.put("same text", [1.0, 2.0])
        assert await new.get("same text") is None
        assert old.key_for("same text") == f"embedding:model-a:{text_digest('same text')}"

    @pytest.mark.asyncio
    async def test_stored_text_mismatch_is_miss(self, embedding_cache, fake_redis):
        """Test an entry whose stored text differs is not reused."""
        fake_redis.strings[embedding_cache.key_for("query one")] = json.dumps({"text": "query two", "vector": [9.0]})
        assert await embedding_cache.get("query one") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_miss(self, embedding_cache, fake_redis):
        """Test unparseable values are treated as a miss."""
        fake_redis.strings[embedding_cache.key_for("q")] = "{not json"
        assert await embedding_cache.get("q") is None

    @pytest.mark.asyncio
    async def test_unreachable_redis_raises_cache_degraded(self, embedding_cache, fake_redis):
        """Test Redis errors are translated."""
        fake_redis.fail_on = {"*"}
        with pytest.raises(CacheDegraded):
            await embedding_cache.get("q")
        with pytest.raises(CacheDegraded):
            await embedding_cache.put("q", [1.0])
