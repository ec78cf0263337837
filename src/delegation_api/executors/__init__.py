"""Category executors and the registry that dispatches to them."""

from delegation_api.executors.handlers import (
    CategoryExecutor,
    EntertainmentExecutor,
    Executor,
    MessageExecutor,
    ShoppingExecutor,
)
from delegation_api.executors.registry import ExecutorRegistry, build_registry

__all__ = [
    "CategoryExecutor",
    "EntertainmentExecutor",
    "Executor",
    "ExecutorRegistry",
    "MessageExecutor",
    "ShoppingExecutor",
    "build_registry",
]
