"""Team environment API.

  GET    /api/v1/environments/templates        -> template catalog
  POST   /api/v1/environments                  -> submit (201)
  GET    /api/v1/environments                  -> list the caller's environments
  GET    /api/v1/environments/{id}             -> environment with progress
  PATCH  /api/v1/environments/{id}/parameters  -> update (202)
  POST   /api/v1/environments/{id}/pause       -> pause (202)
  POST   /api/v1/environments/{id}/resume      -> resume (202)
  POST   /api/v1/environments/{id}/retry       -> retry from ERROR (202)
  DELETE /api/v1/environments/{id}             -> cancel (204) or tear down (202)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from ..models import to_payload
from ..provisioning.environments import EnvironmentService
from .identity import get_requester_id
from .schemas import (
    EnvironmentBody,
    EnvironmentParametersBody,
    page_payload,
    resource_payload,
)


def create_environments_router(service: EnvironmentService) -> APIRouter:
    router = APIRouter(prefix='/api/v1/environments', tags=['environments'])

    @router.get('/templates')
    async def list_templates():
        return {
            'items': [to_payload(t) for t in service.templates.values()],
        }

    @router.post('', status_code=201)
    async def submit_environment(
        body: EnvironmentBody,
        requester_id: str = Depends(get_requester_id),
    ):
        return resource_payload(await service.submit(requester_id, body.to_input()))

    @router.get('')
    async def list_environments(
        status: str | None = None,
        limit: int = Query(default=100, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        requester_id: str = Depends(get_requester_id),
    ):
        items, total = await service.list(
            requester_id, status=status, limit=limit, offset=offset,
        )
        return page_payload(items, total, limit=limit, offset=offset)

    @router.get('/{environment_id}')
    async def get_environment(
        environment_id: str,
        requester_id: str = Depends(get_requester_id),
    ):
        return resource_payload(await service.get(environment_id, requester_id))

    @router.patch('/{environment_id}/parameters', status_code=202)
    async def update_environment_parameters(
        environment_id: str,
        body: EnvironmentParametersBody,
        requester_id: str = Depends(get_requester_id),
    ):
        env = await service.update_parameters(
            environment_id, requester_id, body.to_parameters(),
        )
        return resource_payload(env)

    @router.post('/{environment_id}/pause', status_code=202)
    async def pause_environment(
        environment_id: str,
        requester_id: str = Depends(get_requester_id),
    ):
        return resource_payload(await service.pause(environment_id, requester_id))

    @router.post('/{environment_id}/resume', status_code=202)
    async def resume_environment(
        environment_id: str,
        requester_id: str = Depends(get_requester_id),
    ):
        return resource_payload(await service.resume(environment_id, requester_id))

    @router.post('/{environment_id}/retry', status_code=202)
    async def retry_environment(
        environment_id: str,
        requester_id: str = Depends(get_requester_id),
    ):
        return resource_payload(await service.retry(environment_id, requester_id))

    @router.delete('/{environment_id}')
    async def cancel_environment(
        environment_id: str,
        response: Response,
        requester_id: str = Depends(get_requester_id),
    ):
        env = await service.cancel(environment_id, requester_id)
        if env is None:
            return Response(status_code=204)
        response.status_code = 202
        return resource_payload(env)

    return router
