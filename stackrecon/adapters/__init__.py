"""Providers — bindings between the engine and a deployment backend.

Public re-exports for convenient access.
"""

from stackrecon.adapters.base import Provider
from stackrecon.adapters.cloudformation import CloudFormationProvider
from stackrecon.adapters.mock import MockProvider

__all__ = [
    "CloudFormationProvider",
    "MockProvider",
    "Provider",
]
