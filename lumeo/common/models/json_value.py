import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Union


class JSONKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"


@dataclass(frozen=True)
class JSONValue:
    """
    Tagged JSON value. Provider payloads mix strings, numbers and nested
    structures in the same field, so every decode site goes through
    `from_python` and dispatches on `kind`.
    """
    kind: JSONKind
    value: Any = None

    # --- Constructors ---

    @classmethod
    def string(cls, value: str) -> "JSONValue":
        return cls(JSONKind.STRING, value)

    @classmethod
    def number(cls, value: Union[int, float]) -> "JSONValue":
        return cls(JSONKind.NUMBER, value)

    @classmethod
    def boolean(cls, value: bool) -> "JSONValue":
        return cls(JSONKind.BOOL, value)

    @classmethod
    def array(cls, items: List["JSONValue"]) -> "JSONValue":
        return cls(JSONKind.ARRAY, tuple(items))

    @classmethod
    def object(cls, fields: Dict[str, "JSONValue"]) -> "JSONValue":
        return cls(JSONKind.OBJECT, dict(fields))

    @classmethod
    def null(cls) -> "JSONValue":
        return cls(JSONKind.NULL, None)

    @classmethod
    def from_python(cls, obj: Any) -> "JSONValue":
        """Decode a plain Python value (as produced by json.loads)."""
        if isinstance(obj, JSONValue):
            return obj
        if obj is None:
            return cls.null()
        # bool must be tested before numbers: bool is an int subclass
        if isinstance(obj, bool):
            return cls.boolean(obj)
        if isinstance(obj, (int, float)):
            if isinstance(obj, float) and not math.isfinite(obj):
                raise ValueError(f"Non-finite number is not valid JSON: {obj!r}")
            return cls.number(obj)
        if isinstance(obj, str):
            return cls.string(obj)
        if isinstance(obj, (list, tuple)):
            return cls.array([cls.from_python(item) for item in obj])
        if isinstance(obj, dict):
            fields = {}
            for key, item in obj.items():
                if not isinstance(key, str):
                    raise ValueError(f"JSON object keys must be strings, got {type(key).__name__}")
                fields[key] = cls.from_python(item)
            return cls.object(fields)
        raise ValueError(f"Unsupported JSON value type: {type(obj).__name__}")

    @classmethod
    def loads(cls, raw: Union[str, bytes]) -> "JSONValue":
        return cls.from_python(json.loads(raw))

    # --- Encoding ---

    def to_python(self) -> Any:
        if self.kind is JSONKind.STRING:
            return self.value
        if self.kind is JSONKind.NUMBER:
            return self.value
        if self.kind is JSONKind.BOOL:
            return self.value
        if self.kind is JSONKind.ARRAY:
            return [item.to_python() for item in self.value]
        if self.kind is JSONKind.OBJECT:
            return {key: item.to_python() for key, item in self.value.items()}
        if self.kind is JSONKind.NULL:
            return None
        raise ValueError(f"Unknown JSON kind: {self.kind}")

    def dumps(self) -> str:
        return json.dumps(self.to_python())

    # --- Typed accessors ---

    def as_str(self) -> str:
        if self.kind is JSONKind.STRING:
            return self.value
        if self.kind is JSONKind.NUMBER:
            return str(self.value)
        raise TypeError(f"Expected string-like JSON value, got {self.kind.value}")

    def as_float(self) -> float:
        if self.kind is JSONKind.NUMBER:
            return float(self.value)
        if self.kind is JSONKind.STRING:
            try:
                return float(self.value)
            except ValueError:
                raise TypeError(f"String {self.value!r} is not numeric")
        raise TypeError(f"Expected number-like JSON value, got {self.kind.value}")

    def get(self, key: str, default: "JSONValue" = None) -> "JSONValue":
        if self.kind is not JSONKind.OBJECT:
            raise TypeError(f"Expected JSON object, got {self.kind.value}")
        return self.value.get(key, default)

    @property
    def is_null(self) -> bool:
        return self.kind is JSONKind.NULL
