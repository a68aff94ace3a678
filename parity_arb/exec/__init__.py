"""Execution module for dual-leg order management."""

from .executor import ExecutionOutcome, ExecutionResult, PairedExecutor, classify_outcome

__all__ = ["ExecutionOutcome", "ExecutionResult", "PairedExecutor", "classify_outcome"]
