"""Run report renderers."""

from harness.reporting.base import Reporter
from harness.reporting.json_reporter import JsonReporter
from harness.reporting.loading import load_reporter
from harness.reporting.text_reporter import TextReporter

__all__ = ["JsonReporter", "Reporter", "TextReporter", "load_reporter"]
