"""Built-in per-library policies."""

from __future__ import annotations
from typing import List

from ..registry import Registry, Transformer
from .aerospike import AEROSPIKE
from .database import database_transformers
from .external import external_transformers
from .logs import log_transformers
from .nethttp import NETHTTP
from .web import web_transformers


def builtin_transformers() -> List[Transformer]:
    return (
        web_transformers()
        + [NETHTTP]
        + database_transformers()
        + external_transformers()
        + [AEROSPIKE]
        + log_transformers()
    )


def default_registry() -> Registry:
    """A fresh registry holding every built-in policy."""
    return Registry(builtin_transformers())
