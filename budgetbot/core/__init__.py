"""Core domain models, settings, logging configuration, and shared utilities."""

from budgetbot.core.exceptions import (
    BudgetbotError,
    ConfigError,
    CredentialsMissingError,
    OrchestratorError,
    PartnerApiError,
    PartnerError,
    PartnerTimeoutError,
    PartnerTransportError,
    ScheduleNotFoundError,
    StorageError,
)
from budgetbot.core.logging_config import JsonFormatter, configure_logging
from budgetbot.core.models import (
    CampaignKind,
    ErrorClassification,
    ErrorKind,
    ExecutionResult,
    Outcome,
    RunSummary,
    Schedule,
    ShopCredentials,
    SkipReason,
)
from budgetbot.core.run_context import RunContext, RunMode
from budgetbot.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "CampaignKind",
    "ErrorClassification",
    "ErrorKind",
    "ExecutionResult",
    "Outcome",
    "RunSummary",
    "Schedule",
    "ShopCredentials",
    "SkipReason",
    # Run context
    "RunContext",
    "RunMode",
    # Settings
    "Settings",
    # Exceptions: base
    "BudgetbotError",
    # Exceptions: config
    "ConfigError",
    # Exceptions: storage
    "StorageError",
    "ScheduleNotFoundError",
    # Exceptions: partner
    "PartnerError",
    "PartnerApiError",
    "PartnerTimeoutError",
    "PartnerTransportError",
    # Exceptions: credentials / orchestrator
    "CredentialsMissingError",
    "OrchestratorError",
]
