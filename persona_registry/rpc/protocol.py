"""
JSON-RPC 2.0 protocol for the Persona Registry.

Maps ``persona.*`` methods onto PersonaRegistry operations and registry
errors onto JSON-RPC error objects. Transport lives in ``server.py``.
"""

import json
import logging
from typing import Optional, Dict, Any, Callable, Tuple

from pydantic import ValidationError

from ..personas import PersonaRegistry, PersonaRecord, PersonaRegistryError

logger = logging.getLogger("persona_registry.rpc.protocol")

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

JSONRPC_VERSION = "2.0"


class RPCError(Exception):
    """An error that maps directly onto a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


# =============================================================================
# Envelopes
# =============================================================================

def success_response(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def error_from_exception(exc: Exception) -> Tuple[int, str, Any]:
    """(code, message, data) for any exception raised while handling a call."""
    if isinstance(exc, RPCError):
        return exc.code, exc.message, exc.data
    if isinstance(exc, PersonaRegistryError):
        return exc.code, exc.message, exc.data or None
    if isinstance(exc, ValidationError):
        return INVALID_PARAMS, "Invalid params", json.loads(exc.json(include_url=False, include_input=False))
    logger.exception("Unhandled error processing request")
    return INTERNAL_ERROR, str(exc) or "Internal server error", None


# =============================================================================
# Params
# =============================================================================

def _string_param(params: Any, method: str, key: str, label: str) -> str:
    """First positional string, or ``params[key]`` for keyed params."""
    if isinstance(params, list) and params and isinstance(params[0], str):
        return params[0]
    if isinstance(params, dict) and isinstance(params.get(key), str):
        return params[key]
    raise RPCError(
        INVALID_PARAMS,
        f'Invalid params: Expected array with {label} string or {{"{key}": string}} object for {method}',
    )


def _serialize(value: Any) -> Any:
    if isinstance(value, PersonaRecord):
        return value.to_dict()
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    return value


# =============================================================================
# Methods
# =============================================================================

def _create(registry: PersonaRegistry, params: Any) -> Any:
    if not isinstance(params, dict):
        raise RPCError(INVALID_PARAMS, "Invalid params: Expected object for persona.create")
    persona = registry.create_persona(params)
    registry.flush()
    return persona


def _list(registry: PersonaRegistry, params: Any) -> Any:
    return registry.list_personas()


def _get(registry: PersonaRegistry, params: Any) -> Any:
    persona_id = _string_param(params, "persona.get", "id", "persona ID")
    return registry.get_persona(persona_id)


def _find_by_tag(registry: PersonaRegistry, params: Any) -> Any:
    tag = _string_param(params, "persona.findByTag", "tag", "tag")
    return registry.find_by_tag(tag)


def _duplicate(registry: PersonaRegistry, params: Any) -> Any:
    original_id = _string_param(params, "persona.duplicate", "id", "original persona ID")
    persona = registry.duplicate_persona(original_id)
    registry.flush()
    return persona


def _update(registry: PersonaRegistry, params: Any) -> Any:
    if (
        not isinstance(params, dict)
        or not isinstance(params.get("id"), str)
        or not isinstance(params.get("updates"), dict)
    ):
        raise RPCError(
            INVALID_PARAMS,
            "Invalid params: Expected { id: string, updates: object } for persona.update",
        )
    persona = registry.update_persona(params["id"], params["updates"])
    registry.flush()
    return persona


def _archive(registry: PersonaRegistry, params: Any) -> Any:
    persona_id = _string_param(params, "persona.archive", "id", "persona ID")
    archived = registry.archive_persona(persona_id)
    if archived:
        registry.flush()
    return {"success": archived}


def _flush(registry: PersonaRegistry, params: Any) -> Any:
    registry.flush()
    return {"success": True, "message": "Flush completed"}


METHODS: Dict[str, Callable[[PersonaRegistry, Any], Any]] = {
    "persona.create": _create,
    "persona.list": _list,
    "persona.get": _get,
    "persona.findByTag": _find_by_tag,
    "persona.duplicate": _duplicate,
    "persona.update": _update,
    "persona.archive": _archive,
    "persona.flush": _flush,
}


def dispatch(registry: PersonaRegistry, method: str, params: Any = None) -> Any:
    """Run one method against ``registry`` and return its JSON-ready result."""
    handler = METHODS.get(method)
    if handler is None:
        raise RPCError(METHOD_NOT_FOUND, f"Method not found: {method}")
    return _serialize(handler(registry, params))


# =============================================================================
# Request handling
# =============================================================================

def handle_request(
    body: str,
    registry_factory: Callable[[], PersonaRegistry],
) -> Optional[Dict[str, Any]]:
    """
    Handle a single JSON-RPC request.

    Returns the response object, or None for a notification (``id``
    absent or null), which is executed but never answered.
    """
    try:
        request = json.loads(body)
    except json.JSONDecodeError:
        return error_response(None, PARSE_ERROR, "Parse error: Invalid JSON received")

    if (
        not isinstance(request, dict)
        or request.get("jsonrpc") != JSONRPC_VERSION
        or not isinstance(request.get("method"), str)
    ):
        request_id = request.get("id") if isinstance(request, dict) else None
        return error_response(request_id, INVALID_REQUEST, "Invalid Request object")

    request_id = request.get("id")
    method = request["method"]
    params = request.get("params")

    registry: Optional[PersonaRegistry] = None
    try:
        registry = registry_factory()
        result = dispatch(registry, method, params)
    except Exception as e:
        code, message, data = error_from_exception(e)
        if request_id is None:
            logger.error(f"Error processing notification {method}: {message}")
            return None
        return error_response(request_id, code, message, data)
    finally:
        if registry is not None:
            registry.cancel_pending_save()

    if request_id is None:
        return None
    return success_response(request_id, result)
