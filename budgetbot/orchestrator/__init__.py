"""Orchestration: slot matching, retrying execution, shop workers and waves."""

from budgetbot.orchestrator.audit import AuditTrail
from budgetbot.orchestrator.credentials import CredentialCache
from budgetbot.orchestrator.executor import ExecutionReport, RetryingExecutor
from budgetbot.orchestrator.fleet import group_by_shop, run_fleet
from budgetbot.orchestrator.matcher import SlotWindow, current_slot, select_due
from budgetbot.orchestrator.runner import run_now, run_once
from budgetbot.orchestrator.scheduler import run_continuous
from budgetbot.orchestrator.shop_batch import (
    PacingPolicy,
    ShopBatchOutcome,
    ShopBatchProcessor,
)

__all__ = [
    "AuditTrail",
    "CredentialCache",
    "ExecutionReport",
    "RetryingExecutor",
    "group_by_shop",
    "run_fleet",
    "SlotWindow",
    "current_slot",
    "select_due",
    "run_now",
    "run_once",
    "run_continuous",
    "PacingPolicy",
    "ShopBatchOutcome",
    "ShopBatchProcessor",
]
