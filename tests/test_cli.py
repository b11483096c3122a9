from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from builders import BASE, report_row, ts
from chatledger.errors import InvalidRequest
from chatledger.export.cli import main, parse_filters, parse_resume_cursor


@pytest.fixture()
def seeded(database):
    database["chats"].insert_many(
        [
            {"creator": "cust-1", "creatorType": "user", "channel": "ch-1", "session": "s-1",
             "createdAt": ts(1, 9), "text": "first"},
            {"creator": "bot", "creatorType": "bot", "channel": "ch-1", "session": "s-1",
             "createdAt": ts(1, 9, 0, 2), "text": "answer one"},
            {"creator": "cust-1", "creatorType": "user", "channel": "ch-2", "session": "s-2",
             "createdAt": ts(1, 11), "text": "second"},
        ]
    )
    return database


def test_report_command_prints_camel_case_json(seeded, reader, settings, capsys):
    code = main(
        ["report", "--customer-id", "cust-1", "--start", "2024-03-01T00:00:00Z", "--end", "2024-03-01T23:59:59Z",
         "--channel", "ch-1"],
        reader=reader,
        settings=settings,
    )

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert [row["questionText"] for row in payload["rows"]] == ["first"]
    assert payload["rows"][0]["finalAnswerText"] == "answer one"


def test_report_command_reports_invalid_requests(reader, settings, capsys):
    code = main(
        ["report", "--customer-id", " ", "--start", "2024-03-01T00:00:00Z", "--end", "2024-03-02T00:00:00Z"],
        reader=reader,
        settings=settings,
    )
    assert code == 2
    assert "customerId is required" in capsys.readouterr().err


def test_batch_command_writes_rows_and_summary(seeded, reader, settings, tmp_path, capsys):
    code = main(
        ["batch", "--start", "2024-03-01T00:00:00Z", "--end", "2024-03-01T23:59:59Z", "--customer-id", "cust-1",
         "--pause-ms", "0", "--include-total", "--output-dir", str(tmp_path)],
        reader=reader,
        settings=settings,
    )

    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["status"] == "success"
    assert summary["partnerId"] is None
    assert summary["resultCount"] == 2
    assert summary["total"] == 2
    assert summary["meta"]["executionPlan"]["estimatedTasks"] == 2

    rows = json.loads((tmp_path / summary["outputFile"].rsplit("/", 1)[-1]).read_text(encoding="utf-8"))
    assert [row["questionText"] for row in rows] == ["first", "second"]
    assert json.loads((tmp_path / summary["summaryFile"].rsplit("/", 1)[-1]).read_text(encoding="utf-8")) == summary
    assert summary["outputFile"].rsplit("/", 1)[-1].startswith("conversations-explicit-")


def test_batch_command_resumes_after_cursor(seeded, reader, settings, tmp_path, capsys):
    code = main(
        ["batch", "--start", "2024-03-01T00:00:00Z", "--end", "2024-03-01T23:59:59Z", "--customer-id", "cust-1",
         "--pause-ms", "0", "--resume-occurred-at", "2024-03-01T09:00:00Z", "--output-dir", str(tmp_path)],
        reader=reader,
        settings=settings,
    )

    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["resume"] == {"occurredAt": "2024-03-01T09:00:00.000Z", "rowKey": None}
    assert summary["resultCount"] == 1


def test_batch_command_without_scope_fails(reader, settings, tmp_path, capsys):
    code = main(
        ["batch", "--start", "2024-03-01T00:00:00Z", "--end", "2024-03-02T00:00:00Z", "--output-dir", str(tmp_path)],
        reader=reader,
        settings=settings,
    )
    assert code == 2
    assert "partnerId, customerIds or channelIds is required" in capsys.readouterr().err


def test_resume_cursor_orders_by_time_then_row_key():
    rows = [report_row(0), report_row(1), report_row(2)]
    moment = (BASE + timedelta(minutes=1)).isoformat()

    cursor = parse_resume_cursor(moment, None)
    assert [cursor.should_skip(row) for row in rows] == [True, True, False]

    tied = parse_resume_cursor(moment, rows[1].row_key)
    assert [tied.should_skip(row) for row in rows] == [True, True, False]

    before = parse_resume_cursor(moment, "0")
    assert [before.should_skip(row) for row in rows] == [True, False, False]

    assert parse_resume_cursor(None, "ignored") is None


def test_resume_cursor_rejects_garbage():
    with pytest.raises(InvalidRequest):
        parse_resume_cursor("not a date", None)


def test_parse_filters_drops_unknown_and_operator_keys():
    raw = json.dumps({"session": "s-1", "$where": "sleep(1000)", "bogus": 1, "text": "  "})
    assert parse_filters(raw, channel="ch-1") == {"session": "s-1", "channel": "ch-1"}
    assert parse_filters(None) is None


def test_parse_filters_rejects_non_objects():
    with pytest.raises(InvalidRequest):
        parse_filters("[1, 2]")
    with pytest.raises(InvalidRequest):
        parse_filters("{not json")


def test_batch_resume_pages_past_the_row_limit(database, reader, settings, tmp_path, capsys):
    database["chats"].insert_many(
        [
            {"creator": "cust-5", "creatorType": "user", "channel": "ch-1", "session": f"s-{minute}",
             "createdAt": ts(2, 9, minute), "text": f"question {minute}"}
            for minute in range(5)
        ]
    )
    base_args = ["batch", "--start", "2024-03-02T00:00:00Z", "--end", "2024-03-02T23:59:59Z",
                 "--customer-id", "cust-5", "--pause-ms", "0", "--row-limit", "2"]

    def run(*extra):
        output_dir = tmp_path / f"run-{len(list(tmp_path.iterdir()))}"
        assert main([*base_args, *extra, "--output-dir", str(output_dir)], reader=reader, settings=settings) == 0
        summary = json.loads(capsys.readouterr().out)
        rows = json.loads(Path(summary["outputFile"]).read_text(encoding="utf-8"))
        return summary, [row["questionText"] for row in rows]

    first, first_rows = run()
    assert first_rows == ["question 0", "question 1"]
    assert first["hasMore"] is True

    last = first["lastRow"]
    second, second_rows = run("--resume-occurred-at", last["occurredAt"], "--resume-row-key", last["rowKey"])
    assert second_rows == ["question 2", "question 3"]
    assert second["resultCount"] == 2

    last = second["lastRow"]
    third, third_rows = run("--resume-occurred-at", last["occurredAt"], "--resume-row-key", last["rowKey"])
    assert third_rows == ["question 4"]
    assert third["hasMore"] is False
