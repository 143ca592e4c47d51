import json
import logging
from datetime import date
from decimal import Decimal

from donor_insights.core.logging import JsonFormatter, StructuredFormatter, get_logger


class CaptureHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def capture(name):
    handler = CaptureHandler()
    target = logging.getLogger(name)
    target.addHandler(handler)
    target.setLevel(logging.DEBUG)
    return handler


def test_reserved_context_keys_are_prefixed():
    handler = capture("tests.reserved")

    get_logger("tests.reserved").info("Chunk merged", name="countries", module="frame", chunk=2)

    record = handler.records[0]
    assert record.ctx_name == "countries"
    assert record.ctx_module == "frame"
    assert record.chunk == 2
    assert record.name == "tests.reserved"


def test_structured_line_renders_decimal_and_date():
    handler = capture("tests.structured")

    get_logger("tests.structured").warning("Negative one-time total", total=Decimal("-765.00"), day=date(2024, 3, 1))

    line = StructuredFormatter().format(handler.records[0])
    assert "WARNING tests.structured: Negative one-time total" in line
    assert "total=-765.00" in line
    assert "day=2024-03-01" in line


def test_json_formatter_emits_one_object():
    handler = capture("tests.json")

    try:
        raise ValueError("boom")
    except ValueError as exc:
        get_logger("tests.json").error("Query failed", exc=exc, query="main_metrics")

    payload = json.loads(JsonFormatter().format(handler.records[0]))
    assert payload["level"] == "ERROR"
    assert payload["query"] == "main_metrics"
    assert "ValueError: boom" in payload["exception"]
