"""
Parametric Ledger — runtime bootstrap.

Builds a ready-to-use InsuranceContract from LedgerSettings:
1. Configures structured logging
2. Opens the persisted event ledger when one is configured
3. Assembles the contract with the configured authority and product terms
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import structlog

from parametric_ledger.config import LedgerSettings, settings as default_settings
from parametric_ledger.contract import InsuranceContract
from parametric_ledger.errors import InvalidParameters
from parametric_ledger.events import CompositeEventSink, EventSink, InMemoryEventLog


def configure_logging(config: LedgerSettings | None = None) -> None:
    """Configure structured logging."""
    config = config or default_settings
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if config.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_contract(
    config: LedgerSettings | None = None,
    clock: Callable[[], datetime] | None = None,
    extra_sinks: list[EventSink] | None = None,
) -> tuple[InsuranceContract, InMemoryEventLog]:
    """
    Assemble an InsuranceContract from settings.

    Every event goes to an in-memory log (returned alongside the contract)
    and, when event_log_url is set, to the persisted event ledger as well.

    Raises:
        InvalidParameters: If no authority principal is configured.
    """
    config = config or default_settings
    log = structlog.get_logger()

    if not config.authority_principal:
        raise InvalidParameters(
            "authority_principal is not configured (LEDGER_AUTHORITY_PRINCIPAL)"
        )

    memory_log = InMemoryEventLog()
    sinks: list[EventSink] = [memory_log]

    if config.event_log_url:
        from parametric_ledger.ledger.service import EventLedgerService

        event_ledger = EventLedgerService(config.event_log_url)
        event_ledger.initialize()
        sinks.append(event_ledger)
        log.info("parametric_ledger.runtime.event_ledger_ready")

    sinks.extend(extra_sinks or [])

    contract = InsuranceContract(
        authority=config.authority_principal,
        sink=CompositeEventSink(sinks),
        clock=clock,
        drought_threshold=config.drought_threshold,
        min_duration_days=config.min_duration_days,
        max_duration_days=config.max_duration_days,
        min_premium_percent=config.min_premium_percent,
        unpublished_location_pays=config.unpublished_location_pays,
        enforce_solvency=config.enforce_solvency,
    )

    log.info(
        "parametric_ledger.runtime.contract_ready",
        authority=config.authority_principal,
        drought_threshold=config.drought_threshold,
        unpublished_location_pays=config.unpublished_location_pays,
        enforce_solvency=config.enforce_solvency,
        persisted_events=bool(config.event_log_url),
    )
    return contract, memory_log
