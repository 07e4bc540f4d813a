import json
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest

from town_sim.config.settings import DBSettings
from town_sim.db import connection
from town_sim.db.connection import DBClient
from town_sim.db.recorder import EventRecorder
from town_sim.db.repository import SCHEMA, LedgerRepository
from town_sim.engine.events import AgentMoved, EventBus, HungerChanged
from town_sim.utils.types import EventRecord


class FakeCursor:
    def __init__(self, rows=None):
        self.executed = []
        self.many = []
        self.rows = list(rows or [])
        self.closed = False

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))

    def executemany(self, sql, seq):
        self.many.append((" ".join(sql.split()), list(seq)))

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return self.rows

    def close(self):
        self.closed = True


class FakeDB:
    def __init__(self, rows=None):
        self.cur = FakeCursor(rows)

    @contextmanager
    def cursor(self):
        yield self.cur


class FakeConnection:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0
        self.autocommit = True
        self.closed = 0
        self.cursors = []

    def cursor(self):
        cur = FakeCursor()
        self.cursors.append(cur)
        return cur

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


class MemorySink:
    def __init__(self):
        self.batches = []

    def append_events(self, records):
        self.batches.append(list(records))


def test_cursor_commits_or_rolls_back(monkeypatch):
    conn = FakeConnection()
    opened = []

    def fake_connect(dsn, application_name=None):
        opened.append((dsn, application_name))
        return conn

    monkeypatch.setattr(connection.psycopg2, "connect", fake_connect)
    client = DBClient(DBSettings(host="db", port=5433, name="town", user="u", password="p"))

    with client.cursor() as cur:
        cur.execute("SELECT 1")
    with pytest.raises(RuntimeError):
        with client.cursor():
            raise RuntimeError("boom")

    assert opened == [("dbname=town user=u password=p host=db port=5433", "town_sim")]
    assert conn.autocommit is False
    assert (conn.commits, conn.rollbacks) == (1, 1)
    assert all(c.closed for c in conn.cursors)

    client.close()
    assert conn.closed == 1
    assert client.connected is False


def test_schema_and_event_writes():
    db = FakeDB()
    repo = LedgerRepository(db)
    repo.ensure_schema()
    repo.append_event(EventRecord("run", 60.0, "AgentMoved", "char_a", {"old": "home", "new": "shop"}))
    repo.append_events([])

    assert len(db.cur.executed) == len(SCHEMA) + 1
    _, params = db.cur.executed[-1]
    assert params[:4] == ("run", 60.0, "AgentMoved", "char_a")
    assert json.loads(params[4]) == {"old": "home", "new": "shop"}
    assert db.cur.many == []


@pytest.mark.parametrize(
    "stored, expected",
    [
        ('{"version": 1, "time": 5.0}', {"version": 1, "time": 5.0}),
        ({"version": 1, "time": 7.0}, {"version": 1, "time": 7.0}),
    ],
)
def test_load_snapshot_decodes_text_and_jsonb(stored, expected):
    repo = LedgerRepository(FakeDB(rows=[(stored,)]))
    assert repo.load_snapshot("run") == expected


def test_load_snapshot_without_rows():
    assert LedgerRepository(FakeDB()).load_snapshot("run") is None


def test_get_events_for_run_filters_by_kind():
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    db = FakeDB(rows=[(120, "AgentDied", "char_a", {"cause": "starvation"}, stamp)])
    events = LedgerRepository(db).get_events_for_run("run", kind="AgentDied")
    assert db.cur.executed[0][1] == ("run", "AgentDied")
    assert events == [{
        "time": 120.0,
        "kind": "AgentDied",
        "agent_id": "char_a",
        "payload": {"cause": "starvation"},
        "timestamp": stamp.isoformat(),
    }]


def test_recorder_buffers_and_flushes_in_batches():
    bus = EventBus()
    sink = MemorySink()
    recorder = EventRecorder("run", sink=sink, flush_every=2).attach(bus)

    bus.publish(HungerChanged(time=1.0, agent_id="a", before=100.0, after=99.5))
    for t in range(3):
        bus.publish(AgentMoved(time=float(t), agent_id="a", old="home", new="shop"))

    assert [len(b) for b in sink.batches] == [2]
    assert recorder.flush() == 1
    assert recorder.flush() == 0
    assert recorder.counts() == {"AgentMoved": 3}
    first = recorder.records[0]
    assert (first.run_id, first.kind, first.agent_id) == ("run", "AgentMoved", "a")
    assert first.payload == {"old": "home", "new": "shop"}


def test_recorder_without_sink_keeps_records_in_memory():
    recorder = EventRecorder("run", skip=())
    recorder.handle(HungerChanged(time=1.0, agent_id="a", before=100.0, after=99.5))
    assert recorder.flush() == 0
    assert recorder.counts() == {"HungerChanged": 1}
