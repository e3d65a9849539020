"""Tests for the research repository, the clustering claim and the tagged read cache."""

import time
from datetime import datetime, timedelta, timezone

import pytest

from keyword_mapping.cache import KEYWORD_RESEARCH_TAG, TaggedCache, research_tag, revalidate_research
from keyword_mapping.models.keyword import (
    ClusterItem,
    ClusteringStatus,
    KeywordVolumeItem,
    UserPersona,
)
from keyword_mapping.models.research import DEFAULT_RESEARCH_NAME


# ===========================================================================
# 1. Tagged cache
# ===========================================================================
class TestTaggedCache:

    def test_get_or_load_caches(self):
        cache = TaggedCache()
        calls = []

        def _load():
            calls.append(1)
            return {"v": 1}

        assert cache.get_or_load("k", _load, tags=["t"]) == {"v": 1}
        assert cache.get_or_load("k", _load, tags=["t"]) == {"v": 1}
        assert len(calls) == 1

    def test_none_not_cached(self):
        cache = TaggedCache()
        cache.get_or_load("k", lambda: None)
        assert len(cache) == 0

    def test_revalidate_tag_drops_only_tagged(self):
        cache = TaggedCache()
        cache.set("a", 1, tags=[KEYWORD_RESEARCH_TAG, research_tag("x")])
        cache.set("b", 2, tags=[KEYWORD_RESEARCH_TAG, research_tag("y")])
        cache.set("c", 3, tags=["other"])

        assert cache.revalidate_tag(research_tag("x")) == 1
        assert cache.get("a") is None
        assert cache.get("b") == 2

        revalidate_research(cache)
        assert cache.get("b") is None
        assert cache.get("c") == 3

    def test_expired_entry(self):
        cache = TaggedCache(ttl_seconds=0.0001)
        cache.set("k", 1)
        time.sleep(0.01)
        assert cache.get("k") is None

    def test_max_size_evicts_oldest(self):
        cache = TaggedCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert len(cache) == 2
        assert cache.get("c") == 3


# ===========================================================================
# 2. Create / read / delete
# ===========================================================================
class TestResearchCrud:

    def test_create_defaults(self, repository):
        record = repository.create(query="matcha", region="TW", language="zh-TW")
        stored = repository.get(record.id)

        assert stored is not None
        assert stored.name == DEFAULT_RESEARCH_NAME
        assert stored.keywords == []
        assert stored.clusters == {}
        assert stored.personas == []
        assert stored.status is ClusteringStatus.PENDING
        assert stored.search_engine == "google"

    def test_get_unknown(self, repository):
        assert repository.get("missing") is None
        assert repository.get_detail("missing") is None

    def test_delete(self, repository, make_research):
        research_id = make_research()
        assert repository.delete(research_id) is True
        assert repository.get(research_id) is None
        assert repository.delete(research_id) is False

    def test_list_summaries(self, repository, make_research):
        make_research("matcha", [("matcha", 100), ("matcha latte", 50)])
        make_research("hojicha")
        rows = repository.list_summaries()

        assert {row["query"] for row in rows} == {"matcha", "hojicha"}
        matcha = next(row for row in rows if row["query"] == "matcha")
        assert matcha["keyword_count"] == 2
        assert matcha["total_volume"] == 150


# ===========================================================================
# 3. Field updates
# ===========================================================================
class TestResearchUpdates:

    def test_update_keywords_dedupes(self, repository, make_research):
        research_id = make_research()
        items = [
            KeywordVolumeItem("Matcha Latte", 300),
            KeywordVolumeItem("matcha latte", 500),
            KeywordVolumeItem("抹茶", 10),
            KeywordVolumeItem("抹 茶", 20),
        ]
        assert repository.update_keywords(research_id, items)

        stored = repository.get(research_id).keyword_items()
        assert [(k.text, k.search_volume) for k in stored] == [("matcha latte", 500), ("抹 茶", 20)]

    def test_keywords_stored_camel_case(self, repository, make_research):
        research_id = make_research()
        repository.update_keywords(
            research_id, [KeywordVolumeItem("matcha", 100, competition="LOW", cpc=0.5)]
        )
        assert repository.get(research_id).keywords == [
            {"text": "matcha", "searchVolume": 100, "competition": "LOW", "cpc": 0.5}
        ]

    def test_update_unknown_returns_false(self, repository):
        assert repository.update_keywords("missing", []) is False
        assert repository.update_status("missing", ClusteringStatus.FAILED, "x") is False

    def test_update_clusters(self, repository, make_research):
        research_id = make_research()
        with_volume = [ClusterItem("Drinks", [KeywordVolumeItem("matcha latte", 500)])]
        assert repository.update_clusters(research_id, {"Drinks": ["matcha latte"]}, with_volume)

        record = repository.get(research_id)
        assert record.cluster_map() == {"Drinks": ["matcha latte"]}
        assert record.clusters_with_volume[0]["totalVolume"] == 500

    def test_update_personas(self, repository, make_research):
        research_id = make_research()
        repository.update_personas(research_id, [UserPersona("Drinks", "Cafe goers.")])
        personas = repository.get(research_id).persona_items()
        assert [(p.name, p.description) for p in personas] == [("Drinks", "Cafe goers.")]

    def test_error_kept_only_for_failed(self, repository, make_research):
        research_id = make_research()
        repository.update_status(research_id, ClusteringStatus.FAILED, error="boom")
        assert repository.get(research_id).clustering_error == "boom"

        repository.update_status(research_id, ClusteringStatus.COMPLETED, error="ignored")
        record = repository.get(research_id)
        assert record.status is ClusteringStatus.COMPLETED
        assert record.clustering_error is None


# ===========================================================================
# 4. Cached views are revalidated by writes
# ===========================================================================
class TestReadCacheRevalidation:

    def test_detail_refreshed_after_update(self, repository, make_research):
        research_id = make_research()
        assert repository.get_detail(research_id)["keywords"] == []

        repository.update_keywords(research_id, [KeywordVolumeItem("matcha", 100)])
        assert repository.get_detail(research_id)["keywords"] == [
            {"text": "matcha", "searchVolume": 100}
        ]

    def test_list_refreshed_after_create_and_delete(self, repository, make_research):
        assert repository.list_summaries() == []
        research_id = make_research()
        assert len(repository.list_summaries()) == 1

        repository.delete(research_id)
        assert repository.list_summaries() == []

    def test_status_change_visible_in_views(self, repository, make_research):
        research_id = make_research()
        repository.list_summaries()
        repository.get_detail(research_id)

        repository.claim_clustering(research_id)
        assert repository.get_detail(research_id)["clustering_status"] == "processing"
        assert repository.list_summaries()[0]["clustering_status"] == "processing"


# ===========================================================================
# 5. Clustering claim
# ===========================================================================
class TestClusteringClaim:

    def test_claim_pending(self, repository, make_research):
        research_id = make_research()
        claim = repository.claim_clustering(research_id)

        assert claim.found and claim.claimed
        assert repository.get(research_id).status is ClusteringStatus.PROCESSING

    def test_second_claim_rejected(self, repository, make_research):
        research_id = make_research()
        repository.claim_clustering(research_id)
        claim = repository.claim_clustering(research_id)

        assert claim.found is True
        assert claim.claimed is False
        assert claim.previous_status is ClusteringStatus.PROCESSING

    def test_claim_failed_clears_error(self, repository, make_research):
        research_id = make_research()
        repository.update_status(research_id, ClusteringStatus.FAILED, error="timeout")
        claim = repository.claim_clustering(research_id)

        assert claim.claimed is True
        assert repository.get(research_id).clustering_error is None

    def test_claim_completed_rejected(self, repository, make_research):
        research_id = make_research()
        repository.update_status(research_id, ClusteringStatus.COMPLETED)
        claim = repository.claim_clustering(research_id)
        assert claim.claimed is False
        assert claim.previous_status is ClusteringStatus.COMPLETED

    def test_claim_absent_status(self, repository, make_research):
        from keyword_mapping.database import get_session
        from keyword_mapping.models.research import KeywordResearch

        research_id = make_research()
        with get_session() as session:
            session.get(KeywordResearch, research_id).clustering_status = None
        assert repository.claim_clustering(research_id).claimed is True

    def test_claim_unknown(self, repository):
        claim = repository.claim_clustering("missing")
        assert claim.found is False
        assert claim.claimed is False


# ===========================================================================
# 6. Stale lookups
# ===========================================================================
class TestFindStale:

    def test_only_old_processing_records(self, repository, make_research):
        stuck = make_research("stuck")
        fresh = make_research("fresh")
        repository.claim_clustering(stuck)
        repository.claim_clustering(fresh)

        future = datetime.now(timezone.utc) + timedelta(minutes=1)
        past = datetime.now(timezone.utc) - timedelta(minutes=30)

        assert set(repository.find_stale_processing(future)) == {stuck, fresh}
        assert repository.find_stale_processing(past) == []
