"""Structured ``{status, code, message}`` bodies for synchronous callers."""

from typing import Dict

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


def create_success_response(code: str, message: str) -> Dict[str, str]:
    return {"status": STATUS_SUCCESS, "code": code, "message": message}


def create_error_response(code: str, message: str) -> Dict[str, str]:
    return {"status": STATUS_ERROR, "code": code, "message": message}
