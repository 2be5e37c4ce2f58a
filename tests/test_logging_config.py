import logging

from relying_party.logging_config import (
    REDACTED,
    BearerTokenFilter,
    DailyFileHandler,
    sanitize_headers_for_log,
)


def test_sanitize_headers_masks_credentials():
    headers = {
        "Authorization": "Bearer abc123",
        "Cookie": "sid=1",
        "X-Session-Id": "s-1",
        "X-Api-Key": "k",
        "Accept": "application/json",
    }

    sanitized = sanitize_headers_for_log(headers)

    assert sanitized["Authorization"] == REDACTED
    assert sanitized["Cookie"] == REDACTED
    assert sanitized["X-Session-Id"] == REDACTED
    assert sanitized["X-Api-Key"] == REDACTED
    assert sanitized["Accept"] == "application/json"
    assert headers["Authorization"] == "Bearer abc123"


def test_bearer_filter_masks_formatted_message():
    record = logging.LogRecord(
        "relying_party", logging.INFO, __file__, 1, "header was %s", ("Bearer s3cr3t.token",), None
    )

    assert BearerTokenFilter().filter(record) is True
    assert record.getMessage() == f"header was Bearer {REDACTED}"


def test_daily_file_handler_writes_and_prunes(tmp_path):
    for day in range(1, 10):
        (tmp_path / f"relying-party-2000-01-0{day}.log").write_text("old\n")

    handler = DailyFileHandler(tmp_path, backup_count=3)
    handler.setFormatter(logging.Formatter("%(message)s"))
    try:
        handler.emit(
            logging.LogRecord("relying_party", logging.INFO, __file__, 1, "hello", None, None)
        )
    finally:
        handler.close()

    files = sorted(p.name for p in tmp_path.glob("relying-party-*.log"))
    assert len(files) == 3
    assert f"relying-party-{handler.day.isoformat()}.log" in files
    assert (tmp_path / f"relying-party-{handler.day.isoformat()}.log").read_text() == "hello\n"
