import json
import logging
import uuid

from app.logging_config import JSONFormatter, MessageLogger, get_logger


def _record(logger_name="wabot.test", **extra) -> logging.LogRecord:
    record = logging.LogRecord(logger_name, logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "wabot.test"
        assert entry["message"] == "hello world"
        assert "context" not in entry
        assert "stage" not in entry

    def test_message_fields_are_top_level(self):
        conversation_id = uuid.uuid4()
        record = _record(user_id="15550001111", message_id="wamid.1", stage="send", context={"id": conversation_id})

        entry = json.loads(JSONFormatter().format(record))

        assert entry["user_id"] == "15550001111"
        assert entry["message_id"] == "wamid.1"
        assert entry["stage"] == "send"
        assert entry["context"] == {"id": str(conversation_id)}


class TestMessageLogger:
    def test_tracks_stage(self, caplog):
        log = MessageLogger(get_logger("test"), "15550001111", "wamid.1")

        with caplog.at_level(logging.INFO, logger="wabot.test"):
            log.info("first")
            log.stage = "dialog"
            log.info("second", context={"next_step": "welcome"})

        first, second = caplog.records
        assert first.stage is None
        assert second.stage == "dialog"
        assert second.user_id == "15550001111"
        assert second.message_id == "wamid.1"
        assert second.context == {"next_step": "welcome"}
