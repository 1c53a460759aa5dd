from __future__ import annotations

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """
    Wire format is camelCase; snake_case is accepted on input too.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Envelope(CamelModel, Generic[T]):
    success: bool = True
    message: str
    data: Optional[T] = None


class MessageOut(CamelModel):
    success: bool = True
    message: str


class Paginated(CamelModel, Generic[T]):
    data: list[T]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


def ok(message: str, data=None) -> dict:
    body: dict = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body
