"""Response envelope shared by every endpoint."""

from typing import Generic, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    """Uniform ``{success, message, data}`` envelope."""

    success: bool = True
    message: str = "OK"
    data: DataT | None = None
