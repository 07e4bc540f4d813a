import pytest

from town_sim.social.relationships import Classification, RelationshipEvent, RelationshipGraph


def test_events_only_touch_their_own_direction():
    graph = RelationshipGraph()
    graph.apply_event("a", "b", RelationshipEvent.GIFT, now=5.0)
    assert graph.get("b", "a") is None
    assert graph.classification("b", "a") == Classification.STRANGER
    rel = graph.get("a", "b")
    assert rel.interaction_count == 1
    assert rel.last_interaction_time == 5.0
    assert rel.trust > 0 and rel.affection > 0


def test_mutual_event_updates_both_directions_once():
    graph = RelationshipGraph()
    ab, ba = graph.apply_mutual("a", "b", RelationshipEvent.CHAT, now=1.0)
    assert ab.interaction_count == ba.interaction_count == 1
    assert ab.affection == ba.affection == pytest.approx(0.05)


def test_axes_are_clamped_and_betrayal_makes_enemies():
    graph = RelationshipGraph()
    for _ in range(5):
        graph.apply_event("a", "b", RelationshipEvent.BETRAYAL)
    rel = graph.get("a", "b")
    assert rel.trust == -1.0
    assert rel.affection == -1.0
    assert rel.classification == Classification.ENEMY


def test_repeated_cooperation_builds_friendship():
    graph = RelationshipGraph()
    for _ in range(5):
        graph.apply_event("a", "b", RelationshipEvent.COOPERATION)
    assert graph.classification("a", "b") == Classification.FRIEND


def test_self_relationships_and_negative_magnitudes_are_rejected():
    graph = RelationshipGraph()
    with pytest.raises(ValueError):
        graph.apply_event("a", "a", RelationshipEvent.CHAT)
    with pytest.raises(ValueError):
        graph.apply_event("a", "b", RelationshipEvent.CHAT, magnitude=-1.0)


def test_interaction_memories_are_bounded():
    graph = RelationshipGraph(memory_limit=2)
    graph.apply_event("a", "b", RelationshipEvent.CHAT, now=1.0)
    graph.apply_event("a", "b", RelationshipEvent.BETRAYAL, now=2.0)
    graph.apply_event("a", "b", RelationshipEvent.GIFT, now=3.0)
    events = [m.event for m in graph.get("a", "b").memories]
    assert events == [RelationshipEvent.BETRAYAL, RelationshipEvent.GIFT]


def test_decay_only_moves_inactive_pairs():
    graph = RelationshipGraph()
    graph.apply_event("a", "b", RelationshipEvent.GIFT, now=0.0)
    graph.apply_event("c", "d", RelationshipEvent.GIFT, now=900.0)
    assert graph.decay(now=1000.0, inactivity=500.0, rate=0.05) == 1
    assert graph.get("a", "b").trust == pytest.approx(0.01)
    assert graph.get("c", "d").trust == pytest.approx(0.06)


def test_forget_agent_and_round_trip():
    graph = RelationshipGraph()
    graph.apply_mutual("a", "b", RelationshipEvent.TRADE, now=1.0)
    graph.apply_event("a", "c", RelationshipEvent.INSULT, now=2.0, note="rude")
    restored = RelationshipGraph.from_dict(graph.to_dict())
    assert restored.to_dict() == graph.to_dict()
    graph.forget_agent("b")
    assert len(graph) == 1
    assert [r.to_id for r in graph.neighbours("a")] == ["c"]
