"""
Schema-validated decoding of completion text.

Stages never trust the shape of a completion: the text is parsed as JSON
and validated against the stage's pydantic model. Failures come back as a
DecodeResult with an error string instead of an exception.
"""

import json
import re
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class DecodeResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.value is not None


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def decode(text: str, model: type[T]) -> DecodeResult[T]:
    """Parse completion text into `model`."""
    if not text or not text.strip():
        return DecodeResult(error="empty completion")

    try:
        data = json.loads(_strip_fences(text))
    except json.JSONDecodeError as e:
        return DecodeResult(error=f"invalid JSON: {e.msg} at line {e.lineno} column {e.colno}")

    if not isinstance(data, dict):
        return DecodeResult(error=f"expected a JSON object, got {type(data).__name__}")

    try:
        return DecodeResult(value=model.model_validate(data))
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first["loc"]) or "<root>"
        return DecodeResult(error=f"invalid {model.__name__}: {location}: {first['msg']} ({e.error_count()} errors)")
