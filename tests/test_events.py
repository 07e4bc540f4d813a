from town_sim.engine.events import AgentDied, AgentMoved, EventBus


def test_subscribers_filter_by_kind():
    bus = EventBus()
    moves, everything = [], []
    bus.subscribe(moves.append, [AgentMoved])
    bus.subscribe(everything.append)
    bus.publish(AgentMoved(time=1.0, agent_id="a", old="home", new="shop"))
    bus.publish(AgentDied(time=2.0, agent_id="a", cause="starvation"))
    assert [e.kind for e in moves] == ["AgentMoved"]
    assert [e.kind for e in everything] == ["AgentMoved", "AgentDied"]
    assert bus.published == 2


def test_failing_handler_does_not_stop_delivery():
    bus = EventBus()
    delivered = []

    def broken(event):
        raise RuntimeError("renderer crashed")

    bus.subscribe(broken)
    bus.subscribe(delivered.append)
    bus.publish(AgentDied(time=0.0, agent_id="a", cause="starvation"))
    assert len(delivered) == 1


def test_unsubscribe_and_as_dict():
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)
    bus.unsubscribe(seen.append)
    event = AgentMoved(time=3.0, agent_id="a", old="home", new="mine")
    bus.publish(event)
    assert seen == []
    assert event.as_dict() == {"kind": "AgentMoved", "time": 3.0, "agent_id": "a", "old": "home", "new": "mine"}
