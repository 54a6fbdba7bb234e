"""Test harness that runs sync and async cases against one host loop."""

from .cases import CaseKind, CaseStatus, Outcome, Suite, TestCase
from .driver import SuiteReport, main, run
from .loader import load_suite
from .report import display_report

__all__ = [
    "CaseKind",
    "CaseStatus",
    "Outcome",
    "Suite",
    "SuiteReport",
    "TestCase",
    "display_report",
    "load_suite",
    "main",
    "run",
]
