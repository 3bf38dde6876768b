"""Logging utilities for agentTeam."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

ROOT_LOGGER_NAME = "agentTeam"

_logger_instance: Optional[logging.Logger] = None


def setup_logging(log_dir: Path | str = "logs", level: int = logging.INFO) -> logging.Logger:
    """Setup logging configuration for agentTeam.

    Args:
        log_dir: Directory for the session log file (created if missing)
        level: Console logging level floor (file handler always logs DEBUG)

    Returns:
        Configured logger instance
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"agentteam_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    logger.handlers = []

    # File handler (detailed logs)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    # Console handler (user-friendly)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(max(level, logging.WARNING))
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("agentTeam session started")
    logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def get_logger() -> logging.Logger:
    """Get or create the package logger (singleton pattern)."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = setup_logging()
    return _logger_instance


def log_phase_transition(
    logger: logging.Logger,
    from_phase: str,
    to_phase: str,
    reason: str = "",
    correlation_id: Optional[str] = None,
) -> None:
    """Log an orchestrator phase transition."""
    logger.info(
        f"Phase transition: {from_phase} → {to_phase} "
        f"(reason={reason or '-'}, correlation_id={correlation_id or '(none)'})"
    )


def log_plan_created(logger: logging.Logger, plan) -> None:
    """Log plan creation details.

    Args:
        logger: Logger instance
        plan: OrchestrationPlan
    """
    logger.info(f"\n{'='*80}")
    logger.info(f"Plan created: {plan.plan_id}")
    logger.info(f"  Summary: {plan.plan_summary}")
    logger.info(f"  Total chunks: {len(plan.chunks)}")
    for chunk in plan.chunks:
        deps = ", ".join(chunk.depends_on_chunk_ids) or "-"
        logger.info(f"  [{chunk.sequence_index}] {chunk.chunk_id} ({chunk.assigned_role.value}): {chunk.title}")
        logger.info(f"      depends on: {deps}")
    logger.info(f"{'='*80}\n")


def log_stage_summary(
    logger: logging.Logger,
    stage_number: int,
    total_stages: int,
    results: Iterable,
    elapsed: float,
) -> None:
    """Log the outcome of one execution stage."""
    results = list(results)
    succeeded = sum(1 for r in results if r.is_success)
    logger.info(
        f"Stage {stage_number}/{total_stages} finished in {elapsed:.1f}s: "
        f"succeeded={succeeded}, failed={len(results) - succeeded}"
    )


def log_error(logger: logging.Logger, error: Exception, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Additional context about where the error occurred
    """
    logger.error(f"Error occurred: {type(error).__name__}: {str(error)}")
    if context:
        logger.error(f"  Context: {context}")
    logger.debug("Full traceback:", exc_info=error)
