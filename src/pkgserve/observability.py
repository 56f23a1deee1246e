"""Structured logging and observability helpers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

LOGGER_NAME = "pkgserve"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(slots=True)
class StructuredLogger:
    """Keeps structured records and mirrors each one to the stdlib logger."""

    records: list[dict[str, Any]] = field(default_factory=list)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(LOGGER_NAME))
    max_records: int = 10_000

    def log(
        self,
        *,
        operation: str,
        message: str,
        package: str | None = None,
        stage: str | None = None,
        module: str | None = None,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "package": package,
            "stage": stage,
            "module": module,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        self.records.append(record)
        if len(self.records) > self.max_records:
            del self.records[: len(self.records) - self.max_records]

        where = " ".join(
            f"{name}={value}"
            for name, value in (("package", package), ("stage", stage), ("module", module))
            if value
        )
        self.logger.log(
            _LEVELS.get(level, logging.INFO),
            "%s: %s%s",
            operation,
            message,
            f" [{where}]" if where else "",
        )

    def records_for(self, operation: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("operation") == operation]

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path


def configure_logging(*, debug: bool = False) -> None:
    """Attach a console handler to the package logger once."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s.%(msecs)03d] [%(levelname)s] %(message)s",
                "%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)
