import json
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from .errors import InvalidArgumentError, ParseError


class Serializer(Protocol):
    def serialize(self, obj: Any) -> bytes: ...
    def deserialize(self, data: bytes) -> Any: ...


JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


def default_encoder(o: Any) -> Any:
    # Plain JSON on the wire; these types do not round-trip
    if isinstance(o, (set, frozenset)):
        return sorted(o, key=repr)
    if isinstance(o, datetime):
        return o.isoformat()
    if isinstance(o, UUID):
        return str(o)
    raise TypeError(f"Type {type(o)} not serializable")


class JSONSerializer(Serializer):
    def __init__(self, indent: int | None = 2):
        self.indent = indent

    def serialize(self, obj: Any) -> bytes:
        try:
            return json.dumps(obj, indent=self.indent, default=default_encoder).encode(
                "utf-8"
            )
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(f"Value is not JSON-serializable: {e}") from e

    def deserialize(self, data: bytes) -> JSONValue:
        try:
            return json.loads(data.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise ParseError(f"Invalid UTF-8 in JSON data: {e}", cause=e) from e
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON data: {e}", cause=e) from e
