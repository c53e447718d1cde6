"""
Single-shot stdio JSON-RPC server.

Reads one request from stdin, runs it against a registry backed by the
configured storage, writes at most one response line to stdout and exits.
Logs go to stderr; stdout carries the response only.
"""

import sys
import json
import queue
import logging
import threading
from typing import Optional, Dict, Any, TextIO

from ..config import AppConfig, RegistryConfig, build_storage, config_from_env
from ..personas import PersonaRegistry
from .protocol import (
    handle_request, error_response,
    INVALID_REQUEST, INTERNAL_ERROR,
)

logger = logging.getLogger("persona_registry.rpc.server")


def configure_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def read_stdin(stream: TextIO, timeout: float) -> str:
    """
    Read the whole of ``stream``.

    Raises TimeoutError if the stream hasn't closed within ``timeout``
    seconds; read errors are re-raised in the caller's thread.
    """
    results: "queue.Queue[tuple]" = queue.Queue()

    def reader():
        try:
            results.put(("ok", stream.read()))
        except Exception as e:
            results.put(("error", e))

    threading.Thread(target=reader, daemon=True).start()

    try:
        status, value = results.get(timeout=timeout)
    except queue.Empty:
        raise TimeoutError(f"No input received on stdin within {int(timeout * 1000)}ms")

    if status == "error":
        raise value
    return value


def write_response(stdout: TextIO, response: Dict[str, Any]) -> None:
    try:
        line = json.dumps(response)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to serialize response: {e}")
        line = json.dumps(error_response(
            response.get("id"),
            INTERNAL_ERROR,
            "Internal server error: Cannot serialize response",
        ))
    stdout.write(line + "\n")
    stdout.flush()


def run(
    config: AppConfig,
    stdin: TextIO = None,
    stdout: TextIO = None,
) -> int:
    """Process one request. Returns the process exit code."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    try:
        body = read_stdin(stdin, config.server.stdin_timeout_seconds)
    except TimeoutError as e:
        logger.error(str(e))
        write_response(stdout, error_response(None, INVALID_REQUEST, str(e)))
        return 1
    except Exception as e:
        logger.error(f"stdin error: {e}")
        write_response(stdout, error_response(None, INTERNAL_ERROR, "Error reading from stdin"))
        return 1

    if not body or not body.strip():
        write_response(stdout, error_response(None, INVALID_REQUEST, "No input received on stdin"))
        return 1

    # Single-shot: no event loop to run a debounce timer, mutations flush explicitly
    registry_config = RegistryConfig(
        debounce_interval_ms=config.registry.debounce_interval_ms,
        auto_save_enabled=False,
    )

    def registry_factory() -> PersonaRegistry:
        return PersonaRegistry.create(build_storage(config.storage), registry_config)

    response = handle_request(body, registry_factory)
    if response is not None:
        write_response(stdout, response)
    return 0


def main(config: Optional[AppConfig] = None) -> int:
    config = config or config_from_env()
    configure_logging(config.server.log_level)
    return run(config)
