import time

from clinicalforge.services.cache import QueryCache


def test_lookup_distinguishes_cached_none_from_miss() -> None:
    cache = QueryCache()
    assert cache.lookup(("submission", "a")) == (False, None)

    cache.set(("submission", "a"), None)
    assert cache.lookup(("submission", "a")) == (True, None)


def test_invalidate_matching_is_precise() -> None:
    cache = QueryCache()
    cache.set(("owner", "uid-1", None), [1])
    cache.set(("owner", "uid-1", 5), [1])
    cache.set(("owner", "uid-2", None), [2])
    cache.set(("window", 500), [1, 2])

    assert cache.invalidate_matching("owner", "uid-1") == 2
    assert cache.get(("owner", "uid-2", None)) == [2]
    assert cache.get(("window", 500)) == [1, 2]
    assert len(cache) == 2

    cache.invalidate_matching("window")
    assert len(cache) == 1


def test_entries_expire_after_ttl() -> None:
    cache = QueryCache(ttl=0.05)
    cache.set(("window", 10), [])
    time.sleep(0.1)
    assert cache.lookup(("window", 10)) == (False, None)


def test_capacity_is_bounded() -> None:
    cache = QueryCache(maxsize=3)
    for index in range(10):
        cache.set(("submission", str(index)), index)
    assert len(cache) == 3


def test_set_if_current_refuses_results_older_than_an_invalidation() -> None:
    cache = QueryCache()
    seen = cache.generation("window")
    cache.invalidate_matching("window")

    assert cache.set_if_current(("window", 10), [], seen) is False
    assert cache.lookup(("window", 10)) == (False, None)

    fresh = cache.generation("window")
    assert cache.set_if_current(("window", 10), [1], fresh) is True
    assert cache.get(("window", 10)) == [1]


def test_generations_are_per_kind_and_bumped_by_clear() -> None:
    cache = QueryCache()
    owner = cache.generation("owner")
    cache.invalidate(("submission", "a"))
    assert cache.generation("owner") == owner

    cache.clear()
    assert cache.set_if_current(("owner", "uid-1", None), [1], owner) is False
