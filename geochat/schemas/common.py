# Response envelope shared by every route

from typing import Any, Optional

from pydantic import BaseModel

from geochat.errors import SUCCESS


class ApiResponse(BaseModel):
    """{"code": 0, "msg": "success", "data": ...}; errors carry their code and data=null."""

    code: int = SUCCESS
    msg: str = "success"
    data: Optional[Any] = None


def ok(data: Any = None) -> dict:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [d.model_dump(mode="json") if isinstance(d, BaseModel) else d for d in data]
    return ApiResponse(data=data).model_dump(mode="json")


def error_body(code: int, msg: str) -> dict:
    return ApiResponse(code=code, msg=msg, data=None).model_dump(mode="json")
