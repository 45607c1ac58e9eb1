"""In-memory resource repositories."""

from .repository import (
    InMemoryAccountRequestRepository,
    InMemoryAwsAccountRepository,
    InMemoryEnvironmentRepository,
    InMemoryResourceRepository,
)

__all__ = [
    'InMemoryAccountRequestRepository',
    'InMemoryAwsAccountRepository',
    'InMemoryEnvironmentRepository',
    'InMemoryResourceRepository',
]
