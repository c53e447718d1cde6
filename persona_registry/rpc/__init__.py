"""
JSON-RPC 2.0 interface to the Persona Registry over stdio.
"""

from .protocol import (
    PARSE_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    INVALID_PARAMS,
    INTERNAL_ERROR,
    RPCError,
    dispatch,
    handle_request,
)
from .server import run, main

__all__ = [
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "RPCError",
    "dispatch",
    "handle_request",
    "run",
    "main",
]
