"""
Shared logging configuration for the rules engine.
"""

import sys
import structlog
import logging
import uuid
from typing import Any, Dict, Optional, Tuple
from contextvars import ContextVar, Token

# Context variables for correlation IDs. Each asyncio task gets its own copy,
# so concurrent evaluations never see each other's values.
evaluation_id_var: ContextVar[Optional[str]] = ContextVar('evaluation_id', default=None)
rule_name_var: ContextVar[Optional[str]] = ContextVar('rule_name', default=None)

ContextTokens = Tuple[Token, Token]


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    # Extract service name from logger name
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add evaluation correlation context to log events."""
    evaluation_id = evaluation_id_var.get()
    if evaluation_id:
        event_dict["evaluation_id"] = evaluation_id

    rule_name = rule_name_var.get()
    if rule_name:
        event_dict["rule_name"] = rule_name

    return event_dict


def set_evaluation_context(rule_name: Optional[str] = None,
                           evaluation_id: Optional[str] = None) -> Tuple[str, ContextTokens]:
    """Set evaluation context for logging.

    Returns the evaluation ID and the tokens that restore the previous
    context through ``reset_context``.
    """
    if evaluation_id is None:
        evaluation_id = str(uuid.uuid4())
    tokens = (evaluation_id_var.set(evaluation_id), rule_name_var.set(rule_name))
    return evaluation_id, tokens


def reset_context(tokens: ContextTokens) -> None:
    """Restore the context that was active before ``set_evaluation_context``."""
    evaluation_id_token, rule_name_token = tokens
    rule_name_var.reset(rule_name_token)
    evaluation_id_var.reset(evaluation_id_token)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
