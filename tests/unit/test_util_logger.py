"""
Structured logging tests - context dimensions, JSON output and the
exception decorator.
"""

import json
import logging
import sys

import pytest

from util_logger import ComponentType, JSONFormatter, LoggerFactory, LogContext, log_exceptions


class TestContextLogger:

    def test_context_reaches_custom_dimensions(self, caplog):
        logger = LoggerFactory.create_with_context(
            ComponentType.SERVICE, "ContextTest",
            assessment_id="0f6c2d4e-job", customer_id="cust-9", module_code="BACKUP",
        )

        with caplog.at_level(logging.INFO):
            logger.info("[ORCHESTRATOR] BACKUP started")

        record = caplog.records[-1]
        assert record.custom_dimensions["assessment_id"] == "0f6c2d4e-job"
        assert record.custom_dimensions["module_code"] == "BACKUP"
        assert record.custom_dimensions["component_type"] == "service"
        assert record.name == "service.ContextTest"

    def test_modules_of_one_assessment_keep_their_own_context(self, caplog):
        network = LoggerFactory.create_with_context(
            ComponentType.SERVICE, "ContextTest", assessment_id="job-1", module_code="NETWORK",
        )
        backup = LoggerFactory.create_with_context(
            ComponentType.SERVICE, "ContextTest", assessment_id="job-1", module_code="BACKUP",
        )

        with caplog.at_level(logging.INFO):
            backup.info("backup")
            network.info("network")

        assert [r.custom_dimensions["module_code"] for r in caplog.records[-2:]] == ["BACKUP", "NETWORK"]

    def test_context_loggers_share_the_component_logger(self):
        first = LoggerFactory.create_with_context(ComponentType.SERVICE, "ContextTest", assessment_id="job-1")
        second = LoggerFactory.create_with_context(ComponentType.SERVICE, "ContextTest", assessment_id="job-2")

        assert first.logger is second.logger
        assert first.logger is LoggerFactory.create_logger(ComponentType.SERVICE, "ContextTest")

    def test_explicit_dimensions_win(self, caplog):
        logger = LoggerFactory.create_with_context(ComponentType.SERVICE, "ContextTest", module_code="COST")

        with caplog.at_level(logging.INFO):
            logger.info("override", extra={"custom_dimensions": {"module_code": "PATCH", "attempt": 2}})

        dims = caplog.records[-1].custom_dimensions
        assert dims["module_code"] == "PATCH"
        assert dims["attempt"] == 2

    def test_empty_context_fields_are_dropped(self):
        assert LogContext(customer_id="cust-1").to_dict() == {"customer_id": "cust-1"}


class TestJSONFormatter:

    def test_formats_dimensions_and_exception(self):
        try:
            raise ValueError("bad row")
        except ValueError:
            record = logging.LogRecord(
                "service.Test", logging.ERROR, __file__, 10, "failed %s", ("job-1",),
                exc_info=sys.exc_info(),
            )
        record.custom_dimensions = {"customer_id": "cust-1"}

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "failed job-1"
        assert payload["level"] == "ERROR"
        assert payload["customDimensions"] == {"customer_id": "cust-1"}
        assert payload["exception"]["type"] == "ValueError"


class TestLogExceptions:

    def test_logs_and_reraises(self, caplog):
        @log_exceptions(ComponentType.REPOSITORY, "DecoratorTest")
        def deploy():
            raise RuntimeError("permission denied")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(RuntimeError):
                deploy()

        record = caplog.records[-1]
        assert record.custom_dimensions["function_name"] == "deploy"
        assert record.custom_dimensions["exception_type"] == "RuntimeError"
