from __future__ import annotations

import logging
from typing import Callable, Dict, List

from porter_sync.errors import UnknownOriginError
from porter_sync.origins.base import Origin

LOG = logging.getLogger(__name__)

_ORIGINS: Dict[str, Callable[[], Origin]] = {}


def register(origin_cls):
    """Class decorator; the key is the lower-cased `name` attribute."""
    key = origin_cls.name.lower()
    if key in _ORIGINS and _ORIGINS[key] is not origin_cls:
        raise ValueError(f"Origin {key!r} already registered by {_ORIGINS[key].__name__}")
    _ORIGINS[key] = origin_cls
    LOG.debug("Registered origin %s", key)
    return origin_cls


def get_origin(name: str) -> Callable[[], Origin]:
    try:
        return _ORIGINS[name.lower()]
    except KeyError:
        raise UnknownOriginError(name, available_origins()) from None


def available_origins() -> List[str]:
    return sorted(_ORIGINS)
