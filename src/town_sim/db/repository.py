from __future__ import annotations

import json
from typing import Any

from town_sim.db.connection import DBClient
from town_sim.utils.types import EventRecord

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS runs (
      run_id TEXT PRIMARY KEY,
      seed INTEGER NOT NULL,
      agents INTEGER NOT NULL,
      ticks INTEGER NOT NULL,
      model TEXT NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
      id BIGSERIAL PRIMARY KEY,
      run_id TEXT NOT NULL,
      game_time DOUBLE PRECISION NOT NULL,
      kind TEXT NOT NULL,
      agent_id TEXT,
      payload JSONB NOT NULL,
      timestamp TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS snapshots (
      run_id TEXT NOT NULL,
      game_time DOUBLE PRECISION NOT NULL,
      state JSONB NOT NULL,
      timestamp TIMESTAMPTZ NOT NULL DEFAULT now(),
      PRIMARY KEY (run_id, game_time)
    )
    """,
)


class LedgerRepository:
    def __init__(self, db: DBClient) -> None:
        self.db = db

    def ensure_schema(self) -> None:
        with self.db.cursor() as cur:
            for statement in SCHEMA:
                cur.execute(statement)

    def create_run(self, run_id: str, seed: int, agents: int, ticks: int, model: str) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO runs (run_id, seed, agents, ticks, model)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (run_id, seed, agents, ticks, model),
            )

    def append_event(self, event: EventRecord) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO events (run_id, game_time, kind, agent_id, payload)
                VALUES (%s, %s, %s, %s, %s::jsonb)
                """,
                (
                    event.run_id,
                    event.time,
                    event.kind,
                    event.agent_id,
                    json.dumps(event.payload),
                ),
            )

    def append_events(self, events: list[EventRecord]) -> None:
        if not events:
            return
        with self.db.cursor() as cur:
            cur.executemany(
                """
                INSERT INTO events (run_id, game_time, kind, agent_id, payload)
                VALUES (%s, %s, %s, %s, %s::jsonb)
                """,
                [(e.run_id, e.time, e.kind, e.agent_id, json.dumps(e.payload)) for e in events],
            )

    def save_snapshot(self, run_id: str, game_time: float, state: dict[str, Any]) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO snapshots (run_id, game_time, state)
                VALUES (%s, %s, %s::jsonb)
                ON CONFLICT (run_id, game_time)
                DO UPDATE SET state = EXCLUDED.state, timestamp = now()
                """,
                (run_id, game_time, json.dumps(state)),
            )

    def load_snapshot(self, run_id: str) -> dict[str, Any] | None:
        """Latest snapshot of the run, or None."""
        with self.db.cursor() as cur:
            cur.execute(
                """
                SELECT state
                FROM snapshots
                WHERE run_id = %s
                ORDER BY game_time DESC
                LIMIT 1
                """,
                (run_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        state = row[0]
        # psycopg2 decodes jsonb to dict; plain text columns come back as str
        return json.loads(state) if isinstance(state, str) else state

    def get_events_for_run(self, run_id: str, kind: str | None = None) -> list[dict[str, Any]]:
        with self.db.cursor() as cur:
            if kind is None:
                cur.execute(
                    """
                    SELECT game_time, kind, agent_id, payload, timestamp
                    FROM events
                    WHERE run_id = %s
                    ORDER BY id
                    """,
                    (run_id,),
                )
            else:
                cur.execute(
                    """
                    SELECT game_time, kind, agent_id, payload, timestamp
                    FROM events
                    WHERE run_id = %s AND kind = %s
                    ORDER BY id
                    """,
                    (run_id, kind),
                )
            rows = cur.fetchall()

        return [
            {
                "time": float(r[0]),
                "kind": str(r[1]),
                "agent_id": r[2],
                "payload": r[3],
                "timestamp": r[4].isoformat(),
            }
            for r in rows
        ]
