from turnstile.services.dedup_cache import MemoryDedupCache, dedup_key


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_key_combines_payment_and_order():
    assert dedup_key("123", "order-1") == "123-order-1"


def test_ttl_expiry():
    clock = Clock()
    cache = MemoryDedupCache(ttl_seconds=300, clock=clock)
    cache.mark("a")
    assert cache.seen("a")
    clock.now += 299
    assert cache.seen("a")
    clock.now += 2
    assert not cache.seen("a")


def test_size_cap_evicts_oldest():
    clock = Clock()
    cache = MemoryDedupCache(ttl_seconds=300, max_entries=3, clock=clock)
    for key in "abcd":
        clock.now += 1
        cache.mark(key)
    assert len(cache) == 3
    assert not cache.seen("a")
    assert cache.seen("d")


def test_old_entries_dropped_on_mark():
    clock = Clock()
    cache = MemoryDedupCache(ttl_seconds=300, max_entries=500, max_age_seconds=3600, clock=clock)
    cache.mark("old")
    clock.now += 3601
    cache.mark("new")
    assert len(cache) == 1


def test_remark_moves_to_newest():
    clock = Clock()
    cache = MemoryDedupCache(ttl_seconds=300, max_entries=2, clock=clock)
    cache.mark("a")
    clock.now += 1
    cache.mark("b")
    clock.now += 1
    cache.mark("a")
    clock.now += 1
    cache.mark("c")
    assert cache.seen("a")
    assert not cache.seen("b")
