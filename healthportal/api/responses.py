"""Response envelope: ``{success, message, data?, errors?}``."""
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def envelope(
    message: str,
    data: Any = None,
    status_code: int = 200,
    success: bool = True,
    errors: Optional[Dict[str, str]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


def error_envelope(
    message: str,
    status_code: int,
    errors: Optional[Dict[str, str]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return envelope(message, status_code=status_code, success=False, errors=errors, headers=headers)
