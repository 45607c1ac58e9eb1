"""Account request API.

  POST   /api/v1/account-requests        -> submit (201)
  GET    /api/v1/account-requests        -> list the caller's requests
  GET    /api/v1/account-requests/{id}   -> request with progress
  DELETE /api/v1/account-requests/{id}   -> cancel (204)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from ..provisioning.account_requests import AccountRequestService
from .identity import get_requester_id
from .schemas import AccountRequestBody, page_payload, resource_payload


def create_account_requests_router(service: AccountRequestService) -> APIRouter:
    router = APIRouter(prefix='/api/v1/account-requests', tags=['account-requests'])

    @router.post('', status_code=201)
    async def submit_account_request(
        body: AccountRequestBody,
        requester_id: str = Depends(get_requester_id),
    ):
        request = await service.submit(requester_id, body.to_input())
        return resource_payload(request)

    @router.get('')
    async def list_account_requests(
        status: str | None = None,
        limit: int = Query(default=100, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        requester_id: str = Depends(get_requester_id),
    ):
        items, total = await service.list(
            requester_id, status=status, limit=limit, offset=offset,
        )
        return page_payload(items, total, limit=limit, offset=offset)

    @router.get('/{request_id}')
    async def get_account_request(
        request_id: str,
        requester_id: str = Depends(get_requester_id),
    ):
        return resource_payload(await service.get(request_id, requester_id))

    @router.delete('/{request_id}', status_code=204)
    async def cancel_account_request(
        request_id: str,
        requester_id: str = Depends(get_requester_id),
    ):
        await service.cancel(request_id, requester_id)
        return Response(status_code=204)

    return router
