import json
import logging
import sys
import time
import traceback


class JSONFormatter(logging.Formatter):
    def __init__(self):
        pass

    def format(self, record: logging.LogRecord):
        timestamp = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)) + (
            ".%03dZ" % (1000 * (record.created % 1))
        )

        result = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "taskName": getattr(record, "taskName", None),
            "log_file": record.filename,
            "log_line": record.lineno,
            "fields": {"message": record.getMessage()},
        }

        if isinstance(record.args, dict):
            for key, value in record.args.items():
                result["fields"][key] = value

        if record.exc_info:
            result["full_message"] = traceback.format_exception(
                record.exc_info[0], record.exc_info[1], record.exc_info[2]
            )

        return json.dumps(result, default=str)


def configure_logging():
    if logging.getLogger().handlers:
        return

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=logging.INFO, handlers=[handler])
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def set_verbosity(verbose: bool = False, debug: bool = False):
    """
    Lower the package loggers according to the run's verbose/debug toggles.
    `verbose` covers the correlation and actor traces, `debug` the API traces.
    """
    logging.getLogger("sseload").setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger("sseload.api").setLevel(logging.DEBUG if debug else logging.INFO)
