import json
import logging

from commsflow.logging_config import JSONFormatter, bind_logger, get_logger, setup_logging


def _record(msg="hello", **extra):
    record = logging.LogRecord("commsflow.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_fields(self):
        entry = json.loads(JSONFormatter().format(_record(context={"project_id": "p1"})))

        assert entry["service"] == "commsflow"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "commsflow.test"
        assert entry["message"] == "hello"
        assert entry["context"] == {"project_id": "p1"}

    def test_no_context_key_without_context(self):
        assert "context" not in json.loads(JSONFormatter().format(_record()))

    def test_non_json_values_stringified(self):
        entry = json.loads(JSONFormatter().format(_record(context={"ids": {1, 2}})))
        assert isinstance(entry["context"]["ids"], str)


class TestBindLogger:
    def test_bound_and_call_context_merged(self, caplog):
        log = bind_logger("pipeline", communication_id="c1")

        with caplog.at_level(logging.INFO, logger="commsflow.pipeline"):
            log.info("Project done", context={"project_id": "p1"})
            log.info("Other project", extra={"context": {"project_id": "p2"}})

        assert caplog.records[0].context == {"communication_id": "c1", "project_id": "p1"}
        assert caplog.records[1].context == {"communication_id": "c1", "project_id": "p2"}

    def test_call_context_overrides_bound(self, caplog):
        log = bind_logger(get_logger("batch_service"), batch_id="b1")

        with caplog.at_level(logging.INFO, logger="commsflow.batch_service"):
            log.info("Rebound", context={"batch_id": "b2"})

        assert caplog.records[0].context == {"batch_id": "b2"}


def test_setup_logging_quiets_http_clients():
    setup_logging("debug")

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING

    setup_logging("nonsense")
    assert logging.getLogger().level == logging.INFO
