"""Reporting utilities for chainnet runs."""

from .artifacts import write_manifest
from .metrics import CsvSink, JsonlSink
from .plots import PlotAdapter
from .summary import write_summary

__all__ = ["write_manifest", "JsonlSink", "CsvSink", "PlotAdapter", "write_summary"]
