from typing import Generic, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class ItemResponse(BaseModel, Generic[T]):
    """Single-entity success envelope"""
    ok: bool = True
    item: T


class ItemsResponse(BaseModel, Generic[T]):
    """List success envelope"""
    ok: bool = True
    items: list[T]


class DeletedResponse(BaseModel):
    ok: bool = True
    deleted: int


class ErrorResponse(BaseModel):
    ok: bool = False
    message: str
