from .base_classes import ExplicitParams
from .parameters import (
    AdminParams,
    LoadParams,
    LogsParams,
    MetricsParams,
    Parameters,
    ServerParams,
)

__all__ = [
    "ExplicitParams",
    "Parameters",
    "ServerParams",
    "LoadParams",
    "AdminParams",
    "LogsParams",
    "MetricsParams",
]
