"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from classvote.core.config import settings


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure application logging based on environment."""
    log_level = logging.INFO
    if settings.ENVIRONMENT == "development":
        log_level = logging.DEBUG
    elif settings.ENVIRONMENT == "production":
        log_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)

    # Use JSON formatter in production, standard in development
    if settings.ENVIRONMENT == "production":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)

    # Audit events are kept at every level
    logging.getLogger("audit").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class VotingAuditLogger:
    """Specialized logger for authentication and voting audit events.

    Ticket codes are never logged; only election and student identifiers.
    """

    def __init__(self) -> None:
        self.logger = get_logger("audit")

    def log_login_attempt(
        self,
        identifier: str,
        role: str,
        success: bool,
        ip_address: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log a login attempt."""
        extra_fields = {
            "event_type": "login_attempt",
            "identifier": identifier,
            "role": role,
            "success": success,
            "ip_address": ip_address,
        }

        if not success and reason:
            extra_fields["failure_reason"] = reason

        message = f"Login {'succeeded' if success else 'failed'} for {role}: {identifier}"

        if success:
            self.logger.info(message, extra={"extra_fields": extra_fields})
        else:
            self.logger.warning(message, extra={"extra_fields": extra_fields})

    def log_account_registered(self, account_id: str, role: str, email: str) -> None:
        """Log a new student or teacher account."""
        self.logger.info(
            f"{role.capitalize()} account registered: {email}",
            extra={
                "extra_fields": {
                    "event_type": "account_registered",
                    "account_id": account_id,
                    "role": role,
                    "email": email,
                }
            },
        )

    def log_ticket_issued(
        self, election_id: str, student_id: str, expires_at: datetime
    ) -> None:
        """Log a ticket that was stored and delivered."""
        self.logger.info(
            f"Voting ticket issued for election {election_id}",
            extra={
                "extra_fields": {
                    "event_type": "ticket_issued",
                    "election_id": election_id,
                    "student_id": student_id,
                    "expires_at": expires_at.isoformat(),
                }
            },
        )

    def log_ticket_delivery_failed(self, election_id: str, student_id: str) -> None:
        """Log a ticket rolled back because the email could not be sent."""
        self.logger.warning(
            f"Voting ticket delivery failed for election {election_id}; ticket withdrawn",
            extra={
                "extra_fields": {
                    "event_type": "ticket_delivery_failed",
                    "election_id": election_id,
                    "student_id": student_id,
                }
            },
        )

    def log_vote_cast(self, election_id: str, ballot_hash: str) -> None:
        """Log an accepted ballot (by hash only)."""
        self.logger.info(
            f"Ballot recorded for election {election_id}",
            extra={
                "extra_fields": {
                    "event_type": "vote_cast",
                    "election_id": election_id,
                    "ballot_hash": ballot_hash,
                }
            },
        )

    def log_vote_rejected(self, election_id: str, student_id: str, code: str) -> None:
        """Log a rejected ballot attempt."""
        self.logger.info(
            f"Ballot rejected for election {election_id}: {code}",
            extra={
                "extra_fields": {
                    "event_type": "vote_rejected",
                    "election_id": election_id,
                    "student_id": student_id,
                    "reason": code,
                }
            },
        )

    def log_election_stopped(self, election_id: str, teacher_id: str) -> None:
        """Log a manual election stop."""
        self.logger.info(
            f"Election stopped: {election_id}",
            extra={
                "extra_fields": {
                    "event_type": "election_stopped",
                    "election_id": election_id,
                    "teacher_id": teacher_id,
                }
            },
        )

    def log_tally_alert(self, election_id: str, candidate_id: str) -> None:
        """Alert on a ballot whose tally increment did not apply."""
        self.logger.error(
            f"Tally increment failed for election {election_id}; ballot rolled back",
            extra={
                "extra_fields": {
                    "event_type": "tally_alert",
                    "election_id": election_id,
                    "candidate_id": candidate_id,
                }
            },
        )


# Global audit logger instance
audit_logger = VotingAuditLogger()
