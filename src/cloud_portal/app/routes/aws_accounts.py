"""Linked AWS account API.

  POST   /api/v1/aws-accounts                  -> link (201)
  GET    /api/v1/aws-accounts                  -> list the caller's accounts
  GET    /api/v1/aws-accounts/{id}             -> one account
  POST   /api/v1/aws-accounts/{id}/guardrails  -> submit guardrail claim (202)
  DELETE /api/v1/aws-accounts/{id}             -> unlink (204)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from ..provisioning.aws_accounts import AwsAccountService
from .identity import get_requester_id
from .schemas import LinkAccountBody, SecureAccountBody, page_payload, resource_payload


def create_aws_accounts_router(service: AwsAccountService) -> APIRouter:
    router = APIRouter(prefix='/api/v1/aws-accounts', tags=['aws-accounts'])

    @router.post('', status_code=201)
    async def link_aws_account(
        body: LinkAccountBody,
        requester_id: str = Depends(get_requester_id),
    ):
        return resource_payload(await service.link(requester_id, body.to_input()))

    @router.get('')
    async def list_aws_accounts(
        status: str | None = None,
        limit: int = Query(default=100, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        requester_id: str = Depends(get_requester_id),
    ):
        items, total = await service.list(
            requester_id, status=status, limit=limit, offset=offset,
        )
        return page_payload(items, total, limit=limit, offset=offset)

    @router.get('/{account_ref_id}')
    async def get_aws_account(
        account_ref_id: str,
        requester_id: str = Depends(get_requester_id),
    ):
        return resource_payload(await service.get(account_ref_id, requester_id))

    @router.post('/{account_ref_id}/guardrails', status_code=202)
    async def secure_aws_account(
        account_ref_id: str,
        body: SecureAccountBody | None = None,
        requester_id: str = Depends(get_requester_id),
    ):
        body = body or SecureAccountBody()
        account = await service.secure(
            account_ref_id,
            requester_id,
            body.guardrails.to_params(),
            primary_region=body.primary_region,
        )
        return resource_payload(account)

    @router.delete('/{account_ref_id}', status_code=204)
    async def unlink_aws_account(
        account_ref_id: str,
        requester_id: str = Depends(get_requester_id),
    ):
        await service.unlink(account_ref_id, requester_id)
        return Response(status_code=204)

    return router
