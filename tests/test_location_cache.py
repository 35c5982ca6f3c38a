import threading

from app.services.location_cache import LocationCache, PositionSample, is_out_of_order


def sample(user_id=1, lat=24.1, lng=55.2, ts=0.0, seq=None, online=True):
    return PositionSample(user_id=user_id, latitude=lat, longitude=lng, timestamp=ts, sequence=seq, online=online)


def test_put_overwrites_and_stamps_insertion_time(cache, clock):
    cache.put(1, sample(lat=1.0))
    clock.advance(5)
    entry = cache.put(1, sample(lat=2.0))

    assert cache.get(1).sample.latitude == 2.0
    assert entry.inserted_at == clock.now
    assert len(cache) == 1


def test_is_fresh_up_to_ttl_inclusive(cache, clock):
    cache.put(1, sample())
    clock.advance(120)
    assert cache.is_fresh(1)
    clock.advance(0.001)
    assert not cache.is_fresh(1)
    # stale but not yet swept: still readable through get()
    assert cache.get(1) is not None


def test_missing_user_is_not_fresh(cache):
    assert cache.get(42) is None
    assert not cache.is_fresh(42)


def test_sweep_evicts_only_entries_older_than_ttl(cache, clock):
    cache.put(1, sample(user_id=1))
    clock.advance(100)
    cache.put(2, sample(user_id=2))
    clock.advance(30)

    evicted = cache.sweep()

    assert evicted == [1]
    assert cache.get(1) is None
    assert cache.get(2) is not None


def test_entry_at_exactly_ttl_survives_sweep(cache, clock):
    cache.put(1, sample())
    clock.advance(120)
    assert cache.sweep() == []
    assert cache.get(1) is not None


def test_put_if_newer_refuses_stale_sequence(cache):
    assert cache.put_if_newer(1, sample(lat=1.0, seq=5)) is not None
    assert cache.put_if_newer(1, sample(lat=2.0, seq=5)) is None
    assert cache.put_if_newer(1, sample(lat=3.0, seq=4)) is None
    assert cache.get(1).sample.latitude == 1.0

    assert cache.put_if_newer(1, sample(lat=4.0, seq=6)) is not None
    assert cache.get(1).sample.latitude == 4.0


def test_put_if_newer_without_sequence_always_stores(cache):
    cache.put_if_newer(1, sample(lat=1.0, seq=5))
    assert cache.put_if_newer(1, sample(lat=2.0)) is not None
    assert cache.get(1).sample.latitude == 2.0


def test_is_out_of_order():
    assert is_out_of_order(sample(seq=3), sample(seq=3))
    assert not is_out_of_order(sample(seq=3), sample(seq=4))
    assert not is_out_of_order(sample(), sample(seq=1))


def test_mark_offline_keeps_entry_and_insertion_time(cache, clock):
    original = cache.put(1, sample())
    clock.advance(10)

    entry = cache.mark_offline(1)

    assert entry.sample.online is False
    assert entry.inserted_at == original.inserted_at
    assert cache.get(1).sample.online is False


def test_mark_offline_unknown_user(cache):
    assert cache.mark_offline(99) is None
    assert len(cache) == 0


def test_status_reports_active_and_stale(cache, clock):
    cache.put(1, sample(user_id=1))
    clock.advance(121)
    cache.put(2, sample(user_id=2))

    status = cache.status()

    assert status["total_cached"] == 2
    assert status["active"] == 1
    assert status["stale"] == 1
    by_user = {u["user_id"]: u for u in status["users"]}
    assert by_user[1]["is_active"] is False
    assert by_user[1]["seconds_since_update"] == 121
    assert by_user[2]["is_active"] is True


def test_concurrent_puts_for_many_users(clock):
    cache = LocationCache(ttl_ms=120_000, clock=clock, shards=4)

    def worker(base):
        for i in range(200):
            cache.put(base + i, sample(user_id=base + i))

    threads = [threading.Thread(target=worker, args=(n * 1000,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 8 * 200


def test_concurrent_sequenced_puts_keep_highest(clock):
    cache = LocationCache(ttl_ms=120_000, clock=clock)

    def worker(seqs):
        for seq in seqs:
            cache.put_if_newer(1, sample(seq=seq, lat=seq / 1000.0))

    threads = [threading.Thread(target=worker, args=(range(n, 1000, 4),)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.get(1).sample.sequence == 999


def test_clear(cache):
    cache.put(1, sample())
    cache.clear()
    assert len(cache) == 0
