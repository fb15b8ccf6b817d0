"""Hand-off of validated triggers to deployment workers."""

from .backends import BackgroundDispatcher, LambdaDispatcher, create_dispatcher
from .dispatcher import AckResult, AckStatus, Dispatcher, RetryPolicy

__all__ = [
    "AckResult",
    "AckStatus",
    "Dispatcher",
    "RetryPolicy",
    "BackgroundDispatcher",
    "LambdaDispatcher",
    "create_dispatcher",
]
