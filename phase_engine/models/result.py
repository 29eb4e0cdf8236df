from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Result(BaseModel, Generic[T]):
    """Tagged outcome returned by every public service contract.

    Upstream failures are reported here instead of raised, so advisory
    features (ranking, weakness breakdowns) never break the caller.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None


def success(data=None) -> Result:
    return Result(success=True, data=data)


def failure(message: str) -> Result:
    return Result(success=False, error=message)
