"""
Response Envelopes

Every JSON endpoint answers ``{success, message, data}``; errors are
rendered by the exception handlers in ``main.py`` from ``to_dict()``.
"""

from typing import Any, Optional

from fastapi.responses import JSONResponse

from sharkszone.domain.subscription import PlanName


NO_STORE = {"Cache-Control": "no-store, no-cache, must-revalidate"}


def success(message: str, data: Optional[Any] = None, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        {"success": True, "message": message, "data": data if data is not None else {}},
        headers=headers,
    )


def already_free(message: str = "You are already on the free plan") -> JSONResponse:
    return JSONResponse({
        "success": True,
        "alreadyFree": True,
        "message": message,
        "data": {"plan_type": PlanName.FREE.value},
    })
