import pytest

from forcenext.cache import BoundedCache


class TestBoundedCache:
    def test_keeps_the_most_recent_entries_in_insertion_order(self):
        cache = BoundedCache(20)
        for i in range(25):
            cache.insert_if_absent(f"id{i}", {"n": i})

        assert len(cache) == 20
        assert cache.keys() == [f"id{i}" for i in range(5, 25)]
        assert "id4" not in cache
        assert cache.get("id5") == {"n": 5}
        assert cache.get("id0") is None

    def test_first_payload_wins(self):
        cache = BoundedCache(3)
        assert cache.insert_if_absent("a", "first") is True
        assert cache.insert_if_absent("a", "second") is False
        assert cache.get("a") == "first"

    def test_reinsert_does_not_refresh_recency(self):
        cache = BoundedCache(2)
        cache.insert_if_absent("a", 1)
        cache.insert_if_absent("b", 2)
        cache.insert_if_absent("a", 3)
        cache.insert_if_absent("c", 4)
        assert list(cache) == ["b", "c"]

    def test_iteration_survives_mutation(self):
        cache = BoundedCache(2)
        cache.insert_if_absent("a", 1)
        cache.insert_if_absent("b", 2)
        for key, _ in cache.items():
            cache.insert_if_absent(key + "x", 0)
        assert len(cache) == 2

    def test_clear(self):
        cache = BoundedCache(2)
        cache.insert_if_absent("a", 1)
        cache.clear()
        assert len(cache) == 0
        assert cache.get("a", "missing") == "missing"

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            BoundedCache(0)
