"""HTTP routers for the portal API."""

from .account_requests import create_account_requests_router
from .aws_accounts import create_aws_accounts_router
from .environments import create_environments_router

__all__ = [
    'create_account_requests_router',
    'create_aws_accounts_router',
    'create_environments_router',
]
