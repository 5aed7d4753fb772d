"""
JSON codec for frames exchanged with the solver
"""

import json
from typing import Any

import numpy as np

from optbridge.exceptions import DecodeError, EncodeError


def _to_builtin(obj: Any) -> Any:
    """json.dumps fallback for numpy values and tuples nested in containers"""
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (set, frozenset)):
        raise TypeError("sets have no defined order")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode(value: Any) -> bytes:
    """
    Serialize a structured value to one compact JSON payload

    Keys are sorted, so equal values always give identical bytes. Floats are
    written with repr() and round-trip exactly. The payload never contains a
    newline.
    """
    try:
        text = json.dumps(
            value,
            default=_to_builtin,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )
        return text.encode("utf-8")
    except (TypeError, ValueError) as e:
        # UnicodeEncodeError (lone surrogates) is a ValueError
        raise EncodeError(f"Cannot encode message as JSON: {e}", payload=value) from e


def decode(payload: bytes) -> Any:
    """Parse one JSON payload back into a structured value"""
    try:
        return json.loads(payload.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise DecodeError(f"Frame is not valid UTF-8: {e}", payload=payload) from e
    except json.JSONDecodeError as e:
        raise DecodeError(f"Frame is not valid JSON: {e}", payload=payload) from e
