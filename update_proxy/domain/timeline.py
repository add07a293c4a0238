"""Shared timeline event helper utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def domain_build_stage_event(
    stage: str,
    status: str,
    details: dict[str, Any] | None = None,
) -> dict[str, object]:
    """Build one structured timeline event payload.

    Args:
        stage: Pipeline stage name (`job_control`, `image`, `proxy`, ...).
        status: Stage status marker.
        details: Optional structured details object. Must never carry secrets.

    Returns:
        dict[str, object]: Structured timeline event.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    event_payload: dict[str, object] = {
        "stage": stage,
        "status": status,
        "at_utc": datetime.now(timezone.utc).isoformat(),
    }
    if details is not None:
        event_payload["details"] = details
    return event_payload


def domain_timeline_stage_statuses(timeline: list[dict[str, object]], stage: str) -> list[str]:
    """Return the ordered status markers recorded for one stage.

    Args:
        timeline: Recorded stage events.
        stage: Stage name to filter on.

    Returns:
        list[str]: Status markers in recording order.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return [str(event["status"]) for event in timeline if event.get("stage") == stage]
