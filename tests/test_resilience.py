import asyncio
import json

import pytest

from phenomatch.resilience import (
    Absent,
    SignalStatus,
    gather_signal,
    parse_json_with_repair,
    repair_json,
    retry_policy,
)

ORIGINAL = {
    "analysis": "Broad face with a prominent jaw",
    "primary_region": "Central Europe",
    "matches": [
        {"phenotype": "Alpinid", "confidence": 85, "reasoning": "Rounded head form"},
        {"phenotype": "Dinarid", "confidence": 70, "reasoning": "Tall facial profile"},
    ],
}


def assert_subset(repaired, original):
    """Every key of `repaired` exists in `original`, recursively."""
    if isinstance(repaired, dict):
        assert isinstance(original, dict)
        for key, value in repaired.items():
            assert key in original
            assert_subset(value, original[key])
    elif isinstance(repaired, list):
        assert isinstance(original, list)
        assert len(repaired) <= len(original)
        for item, source in zip(repaired, original):
            assert_subset(item, source)


def test_repair_truncated_mid_string():
    text = json.dumps(ORIGINAL)
    cut = text.index("Tall facial") + len("Tall fa")

    parsed = json.loads(repair_json(text[:cut]))

    assert_subset(parsed, ORIGINAL)
    assert parsed["matches"][0] == ORIGINAL["matches"][0]
    assert parsed["matches"][1]["reasoning"] == "Tall fa"


def test_repair_truncated_mid_array():
    text = json.dumps(ORIGINAL)
    cut = text.index('{"phenotype": "Dinarid"') + len('{"pheno')

    parsed = json.loads(repair_json(text[:cut]))

    assert_subset(parsed, ORIGINAL)
    assert parsed["analysis"] == ORIGINAL["analysis"]
    assert parsed["matches"][0] == ORIGINAL["matches"][0]


def test_repair_drops_dangling_key_and_partial_literal():
    assert json.loads(repair_json('{"a": 1, "b"')) == {"a": 1}
    assert json.loads(repair_json('{"a": 1, "b":')) == {"a": 1}
    assert json.loads(repair_json('{"a": 1, "b": tr')) == {"a": 1}
    assert json.loads(repair_json('{"a": [1, 2,')) == {"a": [1, 2]}


def test_repair_keeps_complete_trailing_number():
    assert json.loads(repair_json('{"a": {"b": 12')) == {"a": {"b": 12}}


def test_repair_strips_fences_and_wrapper_text():
    text = 'Here is the result:\n```json\n{"matches": [{"phenotype": "Sinid"}]}\n```\nHope this helps!'
    assert json.loads(repair_json(text)) == {"matches": [{"phenotype": "Sinid"}]}


def test_repair_skips_braces_in_wrapper_text():
    text = 'Note {see below}: {"analysis": "x", "matches": [{"phenotype": "Sinid"'
    assert json.loads(repair_json(text)) == {"analysis": "x", "matches": [{"phenotype": "Sinid"}]}
    assert parse_json_with_repair('[draft] {"ok": true}') == {"ok": True}


def test_repair_trims_partial_escapes():
    assert json.loads(repair_json('{"a": "line\\')) == {"a": "line"}
    assert json.loads(repair_json('{"a": "x\\u00')) == {"a": "x"}
    # An escaped backslash is kept
    assert json.loads(repair_json('{"a": "x\\\\')) == {"a": "x\\"}


def test_repair_closes_brackets_in_nesting_order():
    assert json.loads(repair_json('[{"a": [{"b": "c"')) == [{"a": [{"b": "c"}]}]


def test_parse_json_with_repair():
    assert parse_json_with_repair('{"ok": true}') == {"ok": True}
    assert parse_json_with_repair('{"ok": tru') == {}
    assert parse_json_with_repair("{\"a\": \"b\x01c\"}") == {"a": "bc"}
    assert parse_json_with_repair(None) is None
    assert parse_json_with_repair("   ") is None
    assert parse_json_with_repair("no json here") is None


def test_gather_signal_ok():
    async def call():
        return [1.0, 2.0]

    outcome = asyncio.run(gather_signal("embedding", call(), timeout_s=1.0))

    assert outcome.status == SignalStatus.OK
    assert outcome.available
    assert outcome.value == [1.0, 2.0]
    assert outcome.to_dict()["status"] == "ok"


def test_gather_signal_timeout():
    async def slow():
        await asyncio.sleep(5)
        return 1

    outcome = asyncio.run(gather_signal("vision", slow(), timeout_s=0.01))

    assert outcome.status == SignalStatus.TIMEOUT
    assert not outcome.available
    assert outcome.value is None


def test_gather_signal_absent_results():
    async def no_face():
        return Absent("no face detected")

    async def nothing():
        return None

    absent = asyncio.run(gather_signal("measurement", no_face(), timeout_s=1.0))
    empty = asyncio.run(gather_signal("measurement", nothing(), timeout_s=1.0))

    assert absent.status == SignalStatus.ABSENT
    assert absent.reason == "no face detected"
    assert empty.status == SignalStatus.ABSENT
    assert empty.reason == "no result"


def test_gather_signal_failures():
    class ServiceDown(Exception):
        pass

    async def expected():
        raise ServiceDown("503 from service")

    async def unexpected():
        raise RuntimeError("boom")

    known = asyncio.run(gather_signal("embedding", expected(), 1.0, (ServiceDown,)))
    unknown = asyncio.run(gather_signal("embedding", unexpected(), 1.0, (ServiceDown,)))

    assert known.status == SignalStatus.FAILED
    assert known.reason == "503 from service"
    assert unknown.status == SignalStatus.FAILED
    assert unknown.reason.startswith("unexpected error")


def test_gather_signal_does_not_swallow_cancellation():
    async def scenario():
        task = asyncio.create_task(gather_signal("vision", asyncio.sleep(10), timeout_s=5.0))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())


def test_retry_policy_single_attempt_reraises():
    calls = []

    async def scenario():
        async for attempt in retry_policy(1, (ValueError,)):
            with attempt:
                calls.append(1)
                raise ValueError("nope")

    with pytest.raises(ValueError):
        asyncio.run(scenario())
    assert len(calls) == 1
