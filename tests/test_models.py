"""Tests for protocol message shapes."""

from __future__ import annotations

import json

from sybaselink.models import PendingRequest, QueryTiming, RequestMessage, ResponseRecord


def test_request_message_serializes_to_one_line() -> None:
    message = RequestMessage(msg_id=4, trans_id=2, finish_trans=True, sql="COMMIT\nTRANSACTION", sent_time=10)

    wire = message.to_wire()

    assert wire.endswith(b"\n")
    assert wire.count(b"\n") == 1
    assert json.loads(wire) == {
        "msgId": 4,
        "transId": 2,
        "finishTrans": True,
        "sql": "COMMIT\nTRANSACTION",
        "sentTime": 10,
    }


def test_response_record_parses_payload() -> None:
    record = ResponseRecord.from_payload(
        {"msgId": 3, "result": [[{"a": 1}]], "javaStartTime": 100, "javaEndTime": 140, "error": "boom"}
    )

    assert record is not None
    assert record.msg_id == 3
    assert record.java_start_time == 100
    assert record.java_end_time == 140
    assert record.error == "boom"


def test_response_record_rejects_non_records() -> None:
    assert ResponseRecord.from_payload([1, 2]) is None
    assert ResponseRecord.from_payload({"result": []}) is None
    assert ResponseRecord.from_payload({"msgId": "7"}) is None
    assert ResponseRecord.from_payload({"msgId": True}) is None


def test_value_unwraps_exactly_one_result_set() -> None:
    single = ResponseRecord(msg_id=1, result=[[{"a": 1}]])
    double = ResponseRecord(msg_id=2, result=[[{"a": 1}], [{"b": 2}]])
    empty = ResponseRecord(msg_id=3, result=[])

    assert single.value() == [{"a": 1}]
    assert double.value() == [[{"a": 1}], [{"b": 2}]]
    assert empty.value() == []


def test_timing_uses_helper_timestamps() -> None:
    request = PendingRequest(msg_id=1, sql="SELECT 1", callback=None, started=0.0)
    record = ResponseRecord(msg_id=1, result=[], java_start_time=1000, java_end_time=1025)

    timing = QueryTiming.measure(request, record)

    assert timing.helper_ms == 25
    assert timing.send_ms is not None and timing.send_ms > 0
    assert timing.elapsed_ms >= 0
