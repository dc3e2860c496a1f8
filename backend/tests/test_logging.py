import json
import logging
import sys

import pytest

from facebank.core.logging import DevFormatter, JSONFormatter, LOG_FILE_NAME, get_logger, setup_logging


def _record(message="Bank append lost a version race", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="facebank.services.identity_store",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_one_json_object_per_record(self):
        line = JSONFormatter("production").format(_record())
        entry = json.loads(line)

        assert entry["level"] == "WARNING"
        assert entry["logger"] == "facebank.services.identity_store"
        assert entry["service"] == "facebank"
        assert entry["environment"] == "production"


    def test_context_fields_forwarded(self):
        entry = json.loads(JSONFormatter("production").format(_record(identity_id=7, face_index=2)))

        assert entry["identity_id"] == 7
        assert entry["face_index"] == 2
        assert "owner_id" not in entry


    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter("production").format(record))
        assert "RuntimeError: boom" in entry["exception"]


def test_dev_formatter_is_single_line():
    line = DevFormatter().format(_record())
    assert "WARNING" in line
    assert "Bank append lost a version race" in line
    assert "\n" not in line


class TestSetupLogging:

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers = handlers
        root.setLevel(level)


    def test_writes_rotating_log_file(self, tmp_path):
        setup_logging(str(tmp_path))
        get_logger("facebank.test").info("hello from the test")

        for handler in logging.getLogger().handlers:
            handler.flush()

        content = (tmp_path / LOG_FILE_NAME).read_text(encoding="utf-8")
        assert "hello from the test" in content


    def test_unwritable_directory_falls_back_to_stdout(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("occupied", encoding="utf-8")

        setup_logging(str(blocker / "logs"))

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
