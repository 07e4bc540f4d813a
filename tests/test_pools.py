import random
import threading

import pytest

from town_sim.errors import Depleted, EmptyPoolError
from town_sim.utils.types import ItemType
from town_sim.world.pools import ResourcePool, ResourceSlot, WeightedPool


def test_weighted_draw_matches_weights():
    pool = WeightedPool(random.Random(1234))
    pool.add("common", 1.0)
    pool.add("rare", 3.0)
    draws = [pool.draw() for _ in range(100_000)]
    share = draws.count("common") / len(draws)
    assert abs(share - 0.25) < 0.01


def test_weighted_draw_is_deterministic_for_seed():
    def run(seed):
        pool = WeightedPool(random.Random(seed))
        for item, weight in (("a", 5), ("b", 2), ("c", 1)):
            pool.add(item, weight)
        return [pool.draw() for _ in range(50)]

    assert run(3) == run(3)


def test_weighted_pool_rejects_bad_weights_and_empty_draws():
    pool = WeightedPool()
    with pytest.raises(ValueError):
        pool.add("x", 0)
    with pytest.raises(ValueError):
        pool.add("x", -1.5)
    with pytest.raises(EmptyPoolError):
        pool.draw()
    with pytest.raises(EmptyPoolError):
        pool.validate()


def _single(capacity=2, replenish=1, interval=100.0):
    return ResourcePool(
        "mine",
        {"ore": ResourceSlot(count=capacity, max_capacity=capacity, replenish=replenish, weight=1.0)},
        refresh_interval=interval,
    )


def test_try_draw_depletes_then_raises():
    pool = _single(capacity=2)
    assert pool.try_draw("ore") == "ore"
    assert pool.try_draw("ore") == "ore"
    with pytest.raises(Depleted):
        pool.try_draw("ore")
    assert pool.count("ore") == 0


def test_refresh_counts_whole_intervals_and_caps():
    pool = _single(capacity=5, replenish=1, interval=100.0)
    for _ in range(5):
        pool.try_draw("ore")
    assert pool.refresh(99.0) == 0
    assert pool.refresh(250.0) == 2
    assert pool.count("ore") == 2
    assert pool.last_refresh_time == 200.0
    assert pool.refresh(1_000.0) == 8
    assert pool.count("ore") == 5


def test_draw_any_skips_depleted_kinds():
    pool = ResourcePool.from_weights(
        "fishing_spot", {"common": 99.0, "rare": 1.0}, capacity=3, refresh_interval=60.0,
    )
    for _ in range(3):
        pool.try_draw("common")
    rng = random.Random(0)
    assert [pool.draw_any(rng) for _ in range(3)] == ["rare", "rare", "rare"]
    with pytest.raises(Depleted):
        pool.draw_any(rng)


def test_pool_without_drawable_kinds_fails_validation():
    with pytest.raises(EmptyPoolError):
        ResourcePool("empty", {}, refresh_interval=10.0).validate()


def test_concurrent_draws_never_grant_more_than_capacity():
    pool = _single(capacity=50)
    granted = []
    lock = threading.Lock()

    def worker():
        for _ in range(20):
            try:
                pool.try_draw("ore")
            except Depleted:
                continue
            with lock:
                granted.append(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(granted) == 50
    assert pool.count("ore") == 0


def test_pool_round_trips_through_dict():
    pool = ResourcePool.from_weights(
        "mine", {ItemType.MINERAL_COPPER: 3.0, ItemType.MINERAL_GOLD: 1.0},
        capacity=4, refresh_interval=3600.0, now=120.0,
    )
    pool.try_draw(ItemType.MINERAL_GOLD)
    restored = ResourcePool.from_dict(pool.to_dict(), kind_type=ItemType)
    assert restored.counts() == pool.counts()
    assert restored.to_dict() == pool.to_dict()
