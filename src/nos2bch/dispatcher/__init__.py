"""Request routing from host applications to key operations."""

from __future__ import annotations

from nos2bch.dispatcher.dispatcher import Dispatcher
from nos2bch.dispatcher.operations import OperationResult, OperationType, Request, describe_operation

__all__ = ["Dispatcher", "OperationResult", "OperationType", "Request", "describe_operation"]
