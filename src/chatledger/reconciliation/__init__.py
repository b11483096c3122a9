"""Turn reconciliation: pairing messages, attributing usage, resolving feedback."""

from chatledger.reconciliation.feedback import interpret_signal, resolve_feedback
from chatledger.reconciliation.report import ReportAssembler
from chatledger.reconciliation.turns import build_turns, sort_turns
from chatledger.reconciliation.usage import UsageMatcher, clamp_match_window

__all__ = [
    "ReportAssembler",
    "UsageMatcher",
    "build_turns",
    "clamp_match_window",
    "interpret_signal",
    "resolve_feedback",
    "sort_turns",
]
