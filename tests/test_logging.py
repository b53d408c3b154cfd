"""
Tests for logging setup and provenance-aware formatters.
"""

import json
import logging
import sys

import pytest

from bayesbag.errors import tag_draw_failure
from bayesbag.utils import logging as bayesbag_logging
from bayesbag.utils.logging import (
    ROOT_LOGGER,
    ColoredFormatter,
    JSONFormatter,
    ProvenanceFormatter,
    get_logger,
    setup_logging,
)


def make_record(message="fitted", exc_info=None, **extra) -> logging.LogRecord:
    logger = get_logger("tests")
    return logger.makeRecord(
        logger.name, logging.INFO, __file__, 1, message, None, exc_info, extra=extra or None,
    )


def failed_trainer_exc_info():
    try:
        raise RuntimeError("singular design")
    except RuntimeError as exc:
        tag_draw_failure(exc, "trainer", draw_index=2)
        return sys.exc_info()


@pytest.fixture
def reset_logging():
    yield
    root = logging.getLogger(ROOT_LOGGER)
    for handler in root.handlers:
        handler.close()
    root.handlers = []
    bayesbag_logging._logging_configured = False


class TestLogging:
    """Test the bayesbag logger tree and its formatters."""

    def test_namespace(self):
        """Short and fully qualified names map to the same logger."""
        assert get_logger("bagging.engine").name == "bayesbag.bagging.engine"
        assert get_logger("bayesbag.bagging.engine") is get_logger("bagging.engine")
        assert get_logger("bayesbag").name == "bayesbag"

    def test_json_includes_extra_provenance(self):
        record = make_record(object_id="A", draw_index=3)

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "fitted"
        assert payload["logger"] == "bayesbag.tests"
        assert payload["object_id"] == "A"
        assert payload["draw_index"] == 3
        assert "test_set_index" not in payload

    def test_json_reads_tagged_exception(self):
        """Indices attached by tag_draw_failure reach the JSON record."""
        record = make_record("trainer failed", exc_info=failed_trainer_exc_info())

        payload = json.loads(JSONFormatter().format(record))

        assert payload["draw_index"] == 2
        assert "RuntimeError" in payload["exception"]
        assert any("raised by trainer" in note for note in payload["notes"])

    def test_plain_formatter_appends_context(self):
        formatter = ProvenanceFormatter("%(message)s")

        assert formatter.format(make_record()) == "fitted"
        assert formatter.format(make_record(bagged_model_index=1, test_set_index=4)) == (
            "fitted [bagged_model_index=1 test_set_index=4]"
        )

    def test_colored_formatter_leaves_record_intact(self):
        record = make_record()

        ColoredFormatter("%(levelname)s %(message)s").format(record)

        assert record.levelname == "INFO"

    def test_file_handler(self, tmp_path, reset_logging):
        """Records reach the log file with their provenance."""
        log_file = tmp_path / "logs" / "run.log"
        setup_logging(level="DEBUG", log_file=log_file, force=True)

        get_logger("bagging.engine").warning("draw skipped", extra={"object_id": "B"})
        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            handler.flush()

        content = log_file.read_text()
        assert "bayesbag.bagging.engine" in content
        assert "draw skipped [object_id='B']" in content

    def test_setup_is_idempotent(self, reset_logging):
        first = setup_logging(level="INFO", force=True)
        handlers = list(first.handlers)

        assert setup_logging(level="DEBUG") is first
        assert first.handlers == handlers
        assert first.level == logging.INFO

    def test_json_console(self, capsys, reset_logging):
        setup_logging(level="INFO", json_format=True, force=True)

        get_logger("tests").info("grid done", extra={"test_set_index": 5})

        line = capsys.readouterr().out.strip().splitlines()[-1]
        assert json.loads(line)["test_set_index"] == 5

    def test_tag_draw_failure_logs(self, caplog):
        with caplog.at_level(logging.ERROR, logger=ROOT_LOGGER):
            failed_trainer_exc_info()

        errors = [r for r in caplog.records if r.name == "bayesbag.errors"]
        assert errors and errors[-1].draw_index == 2
