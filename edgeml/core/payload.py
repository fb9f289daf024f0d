"""
Conversion of request payloads into transport buffers.

A request payload is one "tensors data" value: a single buffer-like object
or a sequence of them, one per tensor. Supported element types are bytes-like
objects, str (UTF-8), numpy arrays and torch tensors.
"""

from __future__ import annotations

import logging
from typing import Any, List, Sequence

import numpy as np
import torch

from .exceptions import InvalidParameterError

logger = logging.getLogger(__name__)


def tensor_to_bytes(tensor: torch.Tensor) -> bytes:
    """Copy a tensor's storage into host bytes (CUDA tensors are staged on CPU)."""
    if tensor.is_cuda:
        cpu_tensor = tensor.detach().cpu().contiguous()
    else:
        cpu_tensor = tensor.detach().contiguous()

    try:
        return cpu_tensor.numpy().tobytes()
    except (TypeError, RuntimeError) as e:
        # numpy has no equivalent for some dtypes (e.g. bfloat16)
        logger.debug(f"numpy bridge failed ({e}), viewing storage as uint8")
        return cpu_tensor.view(torch.uint8).numpy().tobytes()


def _element_to_bytes(item: Any) -> bytes:
    if isinstance(item, bytes):
        return item
    if isinstance(item, (bytearray, memoryview)):
        return bytes(item)
    if isinstance(item, str):
        return item.encode("utf-8")
    if isinstance(item, np.ndarray):
        return np.ascontiguousarray(item).tobytes()
    if isinstance(item, torch.Tensor):
        return tensor_to_bytes(item)
    raise InvalidParameterError(
        f"Unsupported payload element type: {type(item).__name__}",
        context={'expected': 'bytes, str, numpy.ndarray or torch.Tensor'},
    )


def to_buffers(payload: Any) -> List[bytes]:
    """
    Normalize a request payload to a list of byte buffers.

    Raises:
        InvalidParameterError: If the payload is None, empty or of an unsupported type
    """
    if payload is None:
        raise InvalidParameterError("The parameter, input data is None. It should be a valid tensors data.")

    if isinstance(payload, (list, tuple)):
        items: Sequence[Any] = payload
    else:
        items = [payload]

    if len(items) == 0:
        raise InvalidParameterError("The given input data has no tensors.")

    return [_element_to_bytes(item) for item in items]


def decode_text(data: bytes) -> str:
    """Decode a text payload, dropping a trailing NUL terminator if present."""
    if data.endswith(b"\x00"):
        data = data.rstrip(b"\x00")
    return data.decode("utf-8")
