"""Unit tests for structured logging."""

import json
import logging

from elementa.monitoring.logger import StructuredLogger


def events(caplog):
    return [json.loads(r.getMessage()) for r in caplog.records]


def test_events_are_json(caplog):
    logger = StructuredLogger(name="elementa.test_logger", level="DEBUG")

    with caplog.at_level(logging.DEBUG, logger="elementa.test_logger"):
        logger.record_skipped("no_category_match", source_identifier="S1", connection_id=7)

    assert events(caplog) == [
        {"event": "record_skipped", "reason": "no_category_match", "source_identifier": "S1", "connection_id": 7},
    ]


def test_distress_events_are_warnings(caplog):
    logger = StructuredLogger(name="elementa.test_logger_warn")

    with caplog.at_level(logging.INFO, logger="elementa.test_logger_warn"):
        logger.destination_distress("abc", 503, False, elapsed_ms=12.5)
        logger.batch_size_reduced("abc", 25, 12)

    assert [r.levelno for r in caplog.records] == [logging.WARNING, logging.WARNING]
    assert events(caplog)[1] == {"event": "batch_size_reduced", "destination": "abc", "old_size": 25, "new_size": 12}


def test_level_filters_debug(caplog):
    logger = StructuredLogger(name="elementa.test_logger_info", level="INFO")

    with caplog.at_level(logging.DEBUG, logger="elementa.test_logger_info"):
        logger.logger.setLevel(logging.INFO)
        logger.debug("noise")
        logger.import_status(1, 7, "completed")

    assert [e["event"] for e in events(caplog)] == ["import_status"]


def test_non_json_values_are_stringified(caplog):
    logger = StructuredLogger(name="elementa.test_logger_str")

    with caplog.at_level(logging.INFO, logger="elementa.test_logger_str"):
        logger.log("custom", value=object())

    assert events(caplog)[0]["value"].startswith("<object object")
