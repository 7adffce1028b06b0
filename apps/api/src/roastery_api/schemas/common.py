from __future__ import annotations

from pydantic import BaseModel, ConfigDict


def _to_camel(value: str) -> str:
    parts = value.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)


class ErrorDetail(CamelModel):
    kind: str
    message: str


class ErrorResponse(CamelModel):
    detail: ErrorDetail


__all__ = ["CamelModel", "ErrorDetail", "ErrorResponse"]
