"""Main entry point for the Redfish controller.

Reconciles the spec named by SPEC_FILE, or every spec in SPECS_DIR, and
exits. Specs against different BMCs run concurrently; specs against the
same BMC serialise on the endpoint lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path

from .config import ConfigurationError, ControllerConfig
from .models import ResourceSpec
from .reconciler import ReconcileResult, Reconciler
from .spec_loader import SpecLoadError, load_spec, load_specs

# Attributes every LogRecord has; anything else arrived through extra=
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "taskName"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record, structured fields inlined."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRIBUTES}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Send JSON logs to stdout at level; the HTTP stack stays at WARNING."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _load(config: ControllerConfig) -> list[tuple[Path, ResourceSpec]]:
    spec_file = os.environ.get("SPEC_FILE")
    if spec_file:
        path = Path(spec_file)
        return [(path, load_spec(path))]
    return load_specs(config.specs_dir)


async def reconcile_all(
    reconciler: Reconciler, specs: list[tuple[Path, ResourceSpec]]
) -> list[ReconcileResult]:
    """Reconcile specs concurrently; the endpoint lock orders same-BMC specs."""
    return list(
        await asyncio.gather(*(reconciler.reconcile_spec(spec) for _, spec in specs))
    )


async def main() -> int:
    """Run the controller once.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = ControllerConfig.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    try:
        specs = _load(config)
    except SpecLoadError as e:
        logger.error(
            "Invalid spec",
            extra={"error": str(e), "specs_dir": str(config.specs_dir)},
        )
        return 1

    logger.info("Starting Redfish controller", extra={"spec_count": len(specs)})

    reconciler = Reconciler(config)
    task = asyncio.ensure_future(reconcile_all(reconciler, specs))

    loop = asyncio.get_running_loop()
    stop_signals = (signal.SIGTERM, signal.SIGINT)

    def cancel(sig: signal.Signals) -> None:
        logger.info("Stopping on signal", extra={"signal": sig.name})
        task.cancel()

    for sig in stop_signals:
        loop.add_signal_handler(sig, cancel, sig)

    try:
        results = await task
    except asyncio.CancelledError:
        logger.warning("Reconciliation cancelled")
        return 130
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1
    finally:
        for sig in stop_signals:
            loop.remove_signal_handler(sig)

    failed = [result for result in results if not result.success]
    for result in failed:
        logger.error(
            "Resource not reconciled",
            extra={
                "endpoint": result.endpoint,
                "resource": result.resource,
                "error_type": type(result.error).__name__,
            },
        )

    logger.info(
        "Controller finished",
        extra={"reconciled": len(results) - len(failed), "failed": len(failed)},
    )
    return 1 if failed else 0


def run() -> None:
    """Entry point for the controller."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
