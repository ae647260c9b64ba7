"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from loan_engine.config import settings
from loan_engine.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_deduction_outcome(
    deduction_id: str,
    mandate_id: str,
    outcome: str,
    attempt_count: int,
    failure_reason: str | None = None,
) -> None:
    """Log one processed deduction for collections analysis"""
    logging.info(
        "Deduction processed",
        extra={
            "deduction_id": deduction_id,
            "mandate_id": mandate_id,
            "step": "deduction_attempt",
            "outcome": outcome,
            "attempt_count": attempt_count,
            "failure_reason": failure_reason,
        },
    )


def log_score_update(borrower_id: str, score: int, trigger: str) -> None:
    """Log a stored credit score"""
    logging.info(
        "Credit score updated",
        extra={
            "borrower_id": borrower_id,
            "step": "score_update",
            "score": score,
            "trigger": trigger,
        },
    )
