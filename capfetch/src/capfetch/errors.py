import json
import traceback
from typing import Any, Dict

class CapFetchError(Exception):
    """Base exception for capfetch"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

class ValidationError(CapFetchError):
    """Bad input: configuration, supplemental list, stored snapshot"""
    pass

class ProviderError(CapFetchError):
    """A mandatory external call (screener, FX table, blob upload) could not be completed"""
    pass

class StructuralError(CapFetchError):
    """The run cannot produce a trustworthy snapshot and must abort"""
    pass

class UnknownError(CapFetchError):
    """Unexpected errors"""
    pass

def error_payload(e: Exception) -> Dict[str, Any]:
    """Describe any exception; non-capfetch errors carry their traceback."""
    if isinstance(e, CapFetchError):
        return e.to_dict()
    return UnknownError(
        str(e),
        {"traceback": traceback.format_exc().splitlines()},
    ).to_dict()

def format_error(e: Exception) -> str:
    """Format exception as the JSON error envelope printed by the CLI."""
    payload = {
        "ok": False,
        "error": error_payload(e),
        "meta": {
            "version": 1
        }
    }
    return json.dumps(payload, indent=2)
