"""
Utility functions for the M365 sizing tool.

Logging Level Standards:
------------------------
- ERROR: Collection function failures that stop an entire service
         "Failed to collect mailbox usage: {e}"
- WARNING: Partial failures, skipped sub-analyses, missing data
           "Group 'Sales' not found; collecting without group scope"
- INFO: Progress messages, entity counts
        "Collected 412 mailbox usage records"
- DEBUG: Per-item failures that don't affect overall collection
         "Skipping malformed usage row: {e}"
"""
import hashlib
import json
import logging
import os
import re
import sys
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .constants import BYTES_PER_GB, LOG_FILE_PREFIX, M365_AUTH_ERROR_CODES

logger = logging.getLogger(__name__)


# =============================================================================
# Number Helpers
# =============================================================================

def round_half_away(value: float, places: int = 2) -> float:
    """
    Round to `places` decimals with halves rounded away from zero.

    Python's round() uses banker's rounding (round(0.125, 2) == 0.12);
    report figures use the commercial convention instead (0.13).
    """
    if not value:
        return 0.0
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def format_bytes_to_gb(bytes_value: int) -> float:
    """Convert bytes to GB (1 GB = 1024^3 bytes), rounded to 2 decimals."""
    if not bytes_value:
        return 0.0
    return round_half_away(bytes_value / BYTES_PER_GB, 2)


def safe_divide(numerator: float, denominator: float) -> Optional[float]:
    """Divide, returning None instead of raising when the denominator is 0."""
    if not denominator:
        return None
    return numerator / denominator


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def mask_tenant_id(tenant_id: str) -> str:
    """Shorten a tenant ID for console display: 1234abcd...9012"""
    if not tenant_id or len(tenant_id) < 12:
        return tenant_id
    return f"{tenant_id[:8]}...{tenant_id[-4:]}"


# =============================================================================
# Errors
# =============================================================================

class AuthError(Exception):
    """Custom exception for authentication/authorization failures.

    Raised when Microsoft Graph or the credential returns an auth error that
    should stop the run rather than being caught and logged.
    """
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(message)


def is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception represents an authentication/authorization error.

    Detects:
    - azure-identity: ClientAuthenticationError (token acquisition failed)
    - azure-core: HttpResponseError with 401 status
    - msgraph: ODataError with auth-related codes or a 401 status

    Args:
        exc: The exception to check

    Returns:
        True if the exception is an authentication/authorization error
    """
    exc_type_name = type(exc).__name__

    if exc_type_name in ('ClientAuthenticationError', 'CredentialUnavailableError'):
        return True

    if exc_type_name == 'HttpResponseError':
        return getattr(exc, 'status_code', None) == 401

    if exc_type_name == 'ODataError':
        if getattr(exc, 'response_status_code', None) == 401:
            return True
        error = getattr(exc, 'error', None)
        if error:
            error_code = getattr(error, 'code', '')
            return error_code in M365_AUTH_ERROR_CODES

    return False


def check_and_raise_auth_error(exc: Exception, context: str) -> None:
    """
    Check if exception is an auth error and raise AuthError if so.

    Call this in exception handlers before logging and continuing.

    Raises:
        AuthError: If exc is an authentication/authorization error
    """
    if is_auth_error(exc):
        raise AuthError(
            f"Authentication/authorization error while trying to {context}: {exc}",
            original_error=exc
        ) from exc


# =============================================================================
# Logging
# =============================================================================

def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Hash a sensitive ID using consistent hashing.

    Uses first 8 chars of SHA256 so the same ID always maps to the same
    token within and across runs.
    """
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}" if prefix else hash_val


_LOG_REDACT_PATTERNS = [
    # GUIDs (tenant IDs, client IDs, object IDs)
    (re.compile(r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE),
     lambda m: f"id-{hash_sensitive_id(m.group(1).lower())}"),
    # User principal names / mail addresses
    (re.compile(r'\b([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b'),
     lambda m: f"user-{hash_sensitive_id(m.group(1).lower())}@{m.group(2)}"),
]


def redact_log_message(message: str) -> str:
    """Redact tenant/object IDs and principal names from a log message."""
    if not message:
        return message

    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)

    return message


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts sensitive data from log messages.

    Uses consistent hashing so the same ID produces the same hash,
    allowing correlation between log lines.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(str(arg)) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> Optional[str]:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write the run log to a file in this directory

    Returns:
        Path of the run log file, or None when only logging to the console
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file = None
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"{LOG_FILE_PREFIX}_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        # Persisted log must not carry raw tenant/user identifiers
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return log_file


# =============================================================================
# Output
# =============================================================================

def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with secure permissions."""
    # Owner read/write only: exports carry tenant user names
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2, default=str)
    except Exception:
        os.close(fd)
        raise
    logger.info(f"Wrote {filepath}")


def write_text(content: str, filepath: str) -> None:
    """Write a text document (HTML report) with secure permissions."""
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
    except Exception:
        os.close(fd)
        raise
    logger.info(f"Wrote {filepath}")


def load_json(filepath: str) -> Dict[str, Any]:
    """Load JSON file."""
    with open(filepath, 'r', encoding='utf-8') as f:
        return json.load(f)


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for collection steps with rich display.

    Falls back to simple print statements if stdout is not a TTY
    (e.g., when piping output or running in CI).

    Usage:
        with ProgressTracker("M365", total_steps=6) as tracker:
            tracker.update_task("Collecting mailbox usage...")
            records = await collect_mailbox_usage(...)
            tracker.complete_step(len(records), total_gb)
    """

    def __init__(self, provider: str, total_steps: int = 0, show_progress: bool = True):
        self.provider = provider
        self.total_steps = total_steps
        self.show_progress = show_progress and sys.stdout.isatty()

        self.completed_steps = 0
        self.total_entities = 0
        self.total_capacity_gb = 0.0
        self.failed_steps: List[str] = []
        self.current_task = ""

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional[TaskID] = None

    def __enter__(self):
        if self.show_progress:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(
                f"{self.provider} Collection", total=self.total_steps or 1
            )
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.provider} Collection Starting")
            print(f"{'='*60}")
            if self.total_steps:
                print(f"Steps: {self.total_steps}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._progress is not None:
            assert self._console is not None
            self._progress.stop()
            self._console.print()
            self._print_summary_rich()
        else:
            self._print_summary_plain()
        return False

    def update_task(self, task_description: str):
        """Update the current task being performed."""
        self.current_task = task_description
        if self._progress is not None:
            assert self._main_task is not None
            self._progress.update(
                self._main_task,
                description=f"{self.provider} {task_description}"
            )
        else:
            print(f"  {task_description}")

    def complete_step(self, count: int = 0, capacity_gb: float = 0.0, failed: bool = False):
        """Mark a collection step as complete and add its entities to the running total."""
        self.completed_steps += 1
        self.total_entities += count
        self.total_capacity_gb += capacity_gb
        if failed:
            self.failed_steps.append(self.current_task)
        if self._progress is not None:
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=1)

    def _print_summary_rich(self):
        """Print a formatted summary using rich."""
        capacity_tb = self.total_capacity_gb / 1024

        table = Table(title=f"{self.provider} Collection Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Steps", f"{self.completed_steps}/{self.total_steps}")
        table.add_row("Failed Steps", str(len(self.failed_steps)))
        table.add_row("Total Entities", f"{self.total_entities:,}")
        table.add_row("Total Capacity", f"{capacity_tb:,.2f} TB ({self.total_capacity_gb:,.2f} GB)")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        """Print a plain text summary."""
        capacity_tb = self.total_capacity_gb / 1024

        print(f"\n{'='*60}")
        print(f"{self.provider} Collection Complete")
        print(f"{'='*60}")
        print(f"  Steps:          {self.completed_steps}/{self.total_steps}")
        if self.failed_steps:
            print(f"  Failed Steps:   {len(self.failed_steps)}")
        print(f"  Total Entities: {self.total_entities:,}")
        print(f"  Total Capacity: {capacity_tb:,.2f} TB ({self.total_capacity_gb:,.2f} GB)")
        print()


def print_summary_table(rows: List[Dict[str, Any]], title: str = "M365 SIZING SUMMARY") -> None:
    """Print a service summary table to the console."""
    if not rows:
        print("No services collected.")
        return

    table = Table(title=title)
    table.add_column("Service", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Size (GB)", justify="right", style="green")

    total_count = 0
    total_gb = 0.0
    for row in rows:
        count = row.get("entity_count", 0)
        size_gb = row.get("total_gb", 0.0)
        status = "" if row.get("available", True) else " (unavailable)"
        table.add_row(f"{row.get('service_name', '')}{status}", f"{count:,}", f"{size_gb:,.2f}")
        total_count += count
        total_gb += size_gb

    table.add_section()
    table.add_row("TOTAL", f"{total_count:,}", f"{total_gb:,.2f}")

    Console().print(table)
