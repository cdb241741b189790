from __future__ import annotations

import json
from typing import Any

from taskboard.observability import (
    Metrics,
    Tracer,
    bind_owner,
    get_json_logger,
    get_request_context,
    use_request_context,
)


def _parse_json_lines(output: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in output.strip().splitlines() if line.strip()]


def test_json_logger_redacts_and_formats(capsys: Any) -> None:
    logger = get_json_logger("obs-test")
    logger.setLevel(20)  # INFO
    logger.info(
        "hello",
        extra={
            "event": "task_created",
            "attributes": {
                "ACCESS_TOKEN_SECRET": "abc",
                "token": "XYZ",
                "safe": "ok",
            },
        },
    )

    out = capsys.readouterr().out
    lines = _parse_json_lines(out)
    assert len(lines) == 1
    rec = lines[0]
    assert rec["msg"] == "hello"
    assert rec["level"] == "info"
    assert rec["event"] == "task_created"
    attributes = rec["attributes"]
    assert attributes["safe"] == "ok"
    assert attributes["ACCESS_TOKEN_SECRET"] == "[REDACTED]"
    assert attributes["token"] == "[REDACTED]"


def test_request_context_enriches_records(capsys: Any) -> None:
    logger = get_json_logger("obs-test-ctx")
    with use_request_context("req-1"):
        bind_owner("owner-9")
        assert get_request_context() == {"request_id": "req-1", "owner_id": "owner-9"}
        logger.info("inside")
    assert get_request_context() is None
    logger.info("outside")

    inside, outside = _parse_json_lines(capsys.readouterr().out)
    assert inside["request_id"] == "req-1"
    assert inside["owner_id"] == "owner-9"
    assert "request_id" not in outside


def test_exception_fields_stay_on_one_line(capsys: Any) -> None:
    logger = get_json_logger("obs-test-exc")
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.exception("failed", extra={"event": "broadcast_error"})

    (rec,) = _parse_json_lines(capsys.readouterr().out)
    assert rec["err_type"] == "RuntimeError"
    assert rec["err"] == "boom"
    assert "Traceback" in rec["stack"]


def test_tracer_spans_and_parent_child(capsys: Any) -> None:
    logger = get_json_logger("obs-test-trace")
    tracer = Tracer(logger)

    with tracer.span("parent", {"columns": ["To-Do"]}):
        with tracer.span("child"):
            pass

    lines = _parse_json_lines(capsys.readouterr().out)
    starts = [d for d in lines if d.get("event") == "span_start"]
    ends = [d for d in lines if d.get("event") == "span_end"]

    assert len(starts) == 2
    assert len(ends) == 2
    parent_start = next(d for d in starts if d.get("name") == "parent")
    child_start = next(d for d in starts if d.get("name") == "child")
    assert parent_start["attributes"] == {"columns": ["To-Do"]}
    assert child_start.get("parent_id") == parent_start.get("span_id")

    parent_end = next(d for d in ends if d.get("span_id") == parent_start["span_id"])
    assert parent_end["name"] == "parent"
    assert isinstance(parent_end.get("duration_ms"), int | float)


def test_metrics_counters_increment_and_snapshot() -> None:
    metrics = Metrics()
    metrics.increment("broadcasts", {"event": "taskMoved"}, 2)
    metrics.increment("broadcasts", {"event": "taskMoved"})

    assert metrics.value("broadcasts", {"event": "taskMoved"}) == 3
    assert metrics.value("broadcasts") == 0
    snap = metrics.snapshot()
    entry = next(e for e in snap if e["name"] == "broadcasts")
    assert entry == {"name": "broadcasts", "labels": {"event": "taskMoved"}, "value": 3}
