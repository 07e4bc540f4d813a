from concurrent.futures import ThreadPoolExecutor

import pytest

from town_sim.agents.actions import Buy, Decision, Eat, Gift, Harvest, Idle, Mine, Move, Plant, Sell, Talk, Vote
from town_sim.engine.applier import ActionApplier
from town_sim.engine.events import ActionFailed, AgentMoved, DecisionApplied, HungerChanged, RelationshipUpdated
from town_sim.errors import Depleted
from town_sim.social.ballot import Ballot
from town_sim.social.relationships import RelationshipEvent
from town_sim.utils.types import ItemType, Location

from conftest import make_resident


def _events(ctx, *kinds):
    seen = []
    ctx.bus.subscribe(seen.append, kinds or None)
    return seen


def test_selling_three_wheat_pays_forty_five(town, ctx, at_shop):
    at_shop.inventory.add(ItemType.CROP_WHEAT, 3)
    stock_before = town.shop.stock.count(ItemType.CROP_WHEAT)
    result = ActionApplier(town, ctx).apply(at_shop.agent_id, Decision(Sell(ItemType.CROP_WHEAT, 3)))
    assert result.ok
    assert result.details["earned"] == 45
    assert at_shop.money == 145
    assert at_shop.inventory.count(ItemType.CROP_WHEAT) == 0
    assert town.shop.stock.count(ItemType.CROP_WHEAT) == stock_before + 3


def test_failed_sale_changes_nothing(town, ctx, at_shop):
    at_shop.inventory.add(ItemType.CROP_WHEAT, 2)
    failures = _events(ctx, ActionFailed)
    result = ActionApplier(town, ctx).apply(at_shop.agent_id, Decision(Sell(ItemType.CROP_WHEAT, 3)))
    assert not result.ok
    assert result.error == "InsufficientInventory"
    assert at_shop.money == 100
    assert at_shop.inventory.count(ItemType.CROP_WHEAT) == 2
    assert at_shop.current_action is None
    assert [e.error for e in failures] == ["InsufficientInventory"]


def test_site_actions_require_presence(town, ctx, pair):
    a, _ = pair
    a.inventory.add(ItemType.CROP_WHEAT, 1)
    applier = ActionApplier(town, ctx)
    for action in (Sell(ItemType.CROP_WHEAT, 1), Mine(), Plant(ItemType.SEED_WHEAT), Harvest()):
        result = applier.apply(a.agent_id, Decision(action))
        assert result.error == "InvalidLocation", action
    assert a.inventory.count(ItemType.CROP_WHEAT) == 1


def test_buy_moves_goods_and_money(town, ctx, at_shop):
    stock_before = town.shop.stock.count(ItemType.FISH_COMMON)
    result = ActionApplier(town, ctx).apply(at_shop.agent_id, Decision(Buy(ItemType.FISH_COMMON, 2)))
    assert result.ok
    assert at_shop.money == 76
    assert at_shop.inventory.count(ItemType.FISH_COMMON) == 2
    assert town.shop.stock.count(ItemType.FISH_COMMON) == stock_before - 2


def test_buy_without_funds_or_unsold_item_fails(town, ctx, at_shop):
    applier = ActionApplier(town, ctx)
    at_shop.money = 5
    assert applier.apply(at_shop.agent_id, Decision(Buy(ItemType.CROP_WHEAT, 1))).error == "InsufficientFunds"
    at_shop.money = 1000
    assert applier.apply(at_shop.agent_id, Decision(Buy(ItemType.MINERAL_GOLD, 1))).error == "NotForSale"
    assert at_shop.inventory.total_count() == 0


def test_eat_publishes_hunger_change(town, ctx, pair):
    a, _ = pair
    a.hunger = 50.0
    a.inventory.add(ItemType.CROP_RICE, 1)
    seen = _events(ctx, HungerChanged)
    assert ActionApplier(town, ctx).apply(a.agent_id, Decision(Eat(ItemType.CROP_RICE))).ok
    assert a.hunger == 85.0
    assert [(e.before, e.after) for e in seen] == [(50.0, 85.0)]


def test_move_sets_busy_window_and_publishes(town, ctx, pair):
    a, _ = pair
    seen = _events(ctx, AgentMoved, DecisionApplied)
    applier = ActionApplier(town, ctx)
    assert applier.apply(a.agent_id, Decision(Move(Location.MINE))).ok
    assert a.location == Location.MINE
    assert a.current_action == "move"
    assert a.busy_until == 300.0
    assert [type(e).__name__ for e in seen] == ["AgentMoved", "DecisionApplied"]
    assert applier.finish_due(299.0) == []
    assert applier.finish_due(300.0) == [a.agent_id]
    assert a.current_action is None


def test_redundant_move_publishes_no_movement(town, ctx, pair):
    a, _ = pair
    seen = _events(ctx, AgentMoved)
    result = ActionApplier(town, ctx).apply(a.agent_id, Decision(Move(Location.HOME)))
    assert result.ok and result.details["redundant"]
    assert seen == []


def test_idle_leaves_resident_free(town, ctx, pair):
    a, _ = pair
    assert ActionApplier(town, ctx).apply(a.agent_id, Decision(Idle())).ok
    assert a.current_action is None


def test_mining_draws_from_the_shared_pool(town, ctx):
    miner = town.registry.add(make_resident("char_m", location=Location.MINE))
    pool = town.pools[Location.MINE]
    before = sum(pool.counts().values())
    result = ActionApplier(town, ctx).apply(miner.agent_id, Decision(Mine()))
    assert result.ok
    assert miner.inventory.total_count() == 1
    assert sum(pool.counts().values()) == before - 1


def test_mining_a_depleted_site_fails(town, ctx):
    miner = town.registry.add(make_resident("char_m", location=Location.MINE))
    pool = town.pools[Location.MINE]
    for kind in pool.kinds():
        while pool.count(kind):
            pool.try_draw(kind)
    result = ActionApplier(town, ctx).apply(miner.agent_id, Decision(Mine()))
    assert result.error == Depleted.__name__
    assert miner.inventory.total_count() == 0


def test_parallel_miners_never_overdraw(town, ctx):
    miners = [town.registry.add(make_resident(f"char_{i:02d}", location=Location.MINE)) for i in range(10)]
    pool = town.pools[Location.MINE]
    capacity = sum(pool.counts().values())
    applier = ActionApplier(town, ctx)

    def dig(agent_id):
        return [applier.apply(agent_id, Decision(Mine())).ok for _ in range(10)]

    with ThreadPoolExecutor(max_workers=10) as executor:
        outcomes = [ok for batch in executor.map(dig, [m.agent_id for m in miners]) for ok in batch]

    assert sum(outcomes) == capacity
    assert sum(m.inventory.total_count() for m in miners) == capacity
    assert sum(pool.counts().values()) == 0


def test_plant_then_harvest_after_growth(town, ctx):
    farmer = town.registry.add(make_resident("char_f", location=Location.FARM))
    farmer.inventory.add(ItemType.SEED_CARROT, 1)
    applier = ActionApplier(town, ctx)
    assert applier.apply(farmer.agent_id, Decision(Plant(ItemType.SEED_CARROT))).ok
    assert farmer.inventory.count(ItemType.SEED_CARROT) == 0
    assert applier.apply(farmer.agent_id, Decision(Harvest())).error == "NothingToHarvest"
    ctx.clock.advance(3600.0)
    result = applier.apply(farmer.agent_id, Decision(Harvest()))
    assert result.ok
    assert farmer.inventory.count(ItemType.CROP_CARROT) == 2
    assert town.farm.get(farmer.agent_id) is None


def test_planting_twice_is_rejected(town, ctx):
    farmer = town.registry.add(make_resident("char_f", location=Location.FARM))
    farmer.inventory.add(ItemType.SEED_WHEAT, 2)
    applier = ActionApplier(town, ctx)
    applier.apply(farmer.agent_id, Decision(Plant(ItemType.SEED_WHEAT)))
    assert applier.apply(farmer.agent_id, Decision(Plant(ItemType.SEED_WHEAT))).error == "PlotOccupied"
    assert farmer.inventory.count(ItemType.SEED_WHEAT) == 1


def test_gift_transfers_and_warms_the_receiver(town, ctx, pair):
    a, b = pair
    a.inventory.add(ItemType.CROP_WHEAT, 3)
    seen = _events(ctx, RelationshipUpdated)
    result = ActionApplier(town, ctx).apply(a.agent_id, Decision(Gift(b.agent_id, ItemType.CROP_WHEAT, 2)))
    assert result.ok
    assert a.inventory.count(ItemType.CROP_WHEAT) == 1
    assert b.inventory.count(ItemType.CROP_WHEAT) == 2
    assert town.relationships.get(a.agent_id, b.agent_id) is None
    rel = town.relationships.get(b.agent_id, a.agent_id)
    assert rel.memories[-1].event == RelationshipEvent.GIFT
    assert [(e.from_id, e.to_id) for e in seen] == [(b.agent_id, a.agent_id)]


def test_hostile_talk_only_changes_the_target_view(town, ctx, pair):
    a, b = pair
    result = ActionApplier(town, ctx).apply(a.agent_id, Decision(Talk(b.agent_id, "hostile")))
    assert result.ok
    assert result.details["reply_from"] == b.agent_id
    assert town.relationships.get(a.agent_id, b.agent_id) is None
    assert town.relationships.get(b.agent_id, a.agent_id).affection < 0


def test_friendly_talk_is_mutual_and_needs_same_place(town, ctx, pair):
    a, b = pair
    applier = ActionApplier(town, ctx)
    assert applier.apply(a.agent_id, Decision(Talk(b.agent_id))).ok
    assert town.relationships.get(a.agent_id, b.agent_id).interaction_count == 1
    assert town.relationships.get(b.agent_id, a.agent_id).interaction_count == 1
    b.location = Location.MINE
    assert applier.apply(a.agent_id, Decision(Talk(b.agent_id))).error == "InvalidLocation"


def test_talking_to_the_dead_fails(town, ctx, pair):
    a, b = pair
    b.is_alive = False
    assert ActionApplier(town, ctx).apply(a.agent_id, Decision(Talk(b.agent_id))).error == "AgentNotFound"


def test_vote_counts_and_sours_the_candidate(town, ctx, pair):
    a, b = pair
    applier = ActionApplier(town, ctx)
    assert applier.apply(a.agent_id, Decision(Vote(b.agent_id))).error == "MalformedDecision"
    town.ballot = Ballot("exile", [b.agent_id], opened_at=0.0)
    assert applier.apply(a.agent_id, Decision(Vote(b.agent_id))).ok
    assert town.ballot.winner() == b.agent_id
    assert town.relationships.get(b.agent_id, a.agent_id).memories[-1].event == RelationshipEvent.VOTE_AGAINST


def test_decisions_for_dead_or_missing_residents_are_dropped(town, ctx, pair):
    a, _ = pair
    a.is_alive = False
    applier = ActionApplier(town, ctx)
    result = applier.apply(a.agent_id, Decision(Move(Location.SHOP)))
    assert result.dropped and not result.ok
    assert a.location == Location.HOME
    missing = applier.apply("char_nobody", Decision(Idle()))
    assert missing.dropped
    assert missing.error == "AgentNotFound"


@pytest.mark.parametrize("source", ["provider", "cache", "fallback"])
def test_result_keeps_decision_source(town, ctx, pair, source):
    a, _ = pair
    result = ActionApplier(town, ctx).apply(a.agent_id, Decision(Idle(), source=source))
    assert result.source == source
