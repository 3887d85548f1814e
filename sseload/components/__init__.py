from . import config_parser, decorators
from .asyncloop import AsyncLoop
from .metric import Metric
from .ticker import Ticker

__all__ = [
    "AsyncLoop",
    "Metric",
    "Ticker",
    "config_parser",
    "decorators",
]
