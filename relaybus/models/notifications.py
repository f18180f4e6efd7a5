"""Ready-made broadcast messages for value and property change notifications.

Both are frozen Pydantic generic models.  A parametrized class such as
``ValueChangedMessage[int]`` is its own dispatch key: register for the
exact parametrization that will be sent.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class ValueChangedMessage(BaseModel, Generic[T]):
    """Announces that a value has changed."""

    model_config = ConfigDict(frozen=True)

    value: T


class PropertyChangedMessage(BaseModel, Generic[T]):
    """Announces that a named property of *sender* changed.

    Examples
    --------
    >>> msg = PropertyChangedMessage[int](
    ...     sender=None, property_name="count", old_value=1, new_value=2
    ... )
    >>> msg.new_value
    2
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    sender: Any
    property_name: str
    old_value: T
    new_value: T
