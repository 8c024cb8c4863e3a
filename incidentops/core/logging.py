from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from incidentops.core.config import get_settings


_HANDLER_NAME = "incidentops"
# request_id arrives through `extra` and is emitted like any other extra field.
_JSON_FIELDS = "%(levelname)s %(name)s %(message)s"


def build_json_formatter() -> JsonFormatter:
    # One JSON object per line for log aggregators.
    return JsonFormatter(
        _JSON_FIELDS,
        rename_fields={"levelname": "level", "name": "logger"},
        timestamp=True,
    )


def configure_logging() -> None:
    # Install one stdout handler; repeated app factories must not duplicate output.
    settings = get_settings()
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    if settings.log_json:
        handler.setFormatter(build_json_formatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    root.addHandler(handler)
