"""Trace recorder for orchestration runs."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from testarchitect.state import Action, Observation
from testarchitect.util.logging import redact


@dataclass
class TraceRecorder:
    trace_id: str
    trace_dir: str
    started_at: float = field(default_factory=time.time)
    events: list[dict[str, Any]] = field(default_factory=list)

    def record(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append(
            {
                "type": event_type,
                "timestamp": time.time(),
                "payload": payload,
            }
        )

    def record_decision(self, step: int, action: Action) -> None:
        self.record(
            "decision",
            {
                "step": step,
                "kind": action.kind.value,
                "source": action.source,
                "reasoning": redact(action.reasoning),
            },
        )

    def record_observation(self, step: int, observation: Observation) -> None:
        event_type = "failure" if observation.failure else "observation"
        self.record(
            event_type,
            {
                "step": step,
                "summary": redact(observation.summary),
                "fields": sorted(observation.state_delta),
                "task_complete": observation.task_complete,
                "failure": observation.failure,
            },
        )

    def finalize(self, stats: dict[str, Any]) -> str:
        trace_dir = Path(self.trace_dir)
        trace_dir.mkdir(parents=True, exist_ok=True)
        trace_path = trace_dir / f"{self.trace_id}.json"
        payload = {
            "trace_id": self.trace_id,
            "started_at": self.started_at,
            "ended_at": time.time(),
            "stats": stats,
            "events": self.events,
        }
        trace_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return str(trace_path)
