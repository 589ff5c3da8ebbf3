"""Tagged references to related records.

A related record arrives either fully populated or as a bare identity stub
(for instance when the referenced row has been soft-deleted). Instead of
probing attributes at every call site, the wire value is normalised once
into ``Stub`` or ``Full`` and read through ``ref_id`` / ``full_or_none``.
"""

from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class Stub(BaseModel):
    """Reference that only carries the related record's identity."""

    kind: Literal["stub"] = "stub"
    id: int

    model_config = {"frozen": True}


class Full(BaseModel, Generic[T]):
    """Reference that carries the whole related record."""

    kind: Literal["full"] = "full"
    record: T

    @property
    def id(self) -> int:
        """Identity of the wrapped record."""
        return self.record.id  # type: ignore[attr-defined]


def wrap_reference(value: Any, marker_field: str) -> Any:
    """
    Normalise a raw wire value into the tagged shape.

    Args:
        value: ``None``, an integer id, an ``{"id": n}`` stub, a full record
            dict, or an already tagged reference
        marker_field: Field whose presence identifies a populated record

    Returns:
        Value ready to be validated as ``Stub | Full[T] | None``
    """
    if value is None or isinstance(value, Stub | Full):
        return value
    if isinstance(value, int):
        return {"kind": "stub", "id": value}
    if isinstance(value, BaseModel):
        return {"kind": "full", "record": value}
    if isinstance(value, dict):
        if value.get("kind") in ("stub", "full"):
            return value
        if marker_field in value and value.get(marker_field) is not None:
            return {"kind": "full", "record": value}
        return {"kind": "stub", "id": value.get("id")}
    return value


def ref_id(ref: "Stub | Full[Any] | None") -> int | None:
    """Return the identity behind a reference, whichever variant it is."""
    if ref is None:
        return None
    return ref.id


def full_or_none(ref: "Stub | Full[T] | None") -> T | None:
    """Narrow a reference to its populated record, or ``None`` for stubs."""
    if isinstance(ref, Full):
        return ref.record
    return None
