"""
Connection lifecycle routes: request, list, accept, reject, remove.
"""
import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.core.dependencies import get_connection_service
from app.middleware.auth import get_acting_user_id, require_same_user
from app.middleware.rate_limit import limit_connection_requests
from app.schemas.connection import (
    ConnectionCreateRequest,
    ConnectionCreateResponse,
    ConnectionListResponse,
    ConnectionResponse,
)
from app.services.connection_service import ConnectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["Connections"])


@router.post("", response_model=ConnectionCreateResponse, status_code=status.HTTP_201_CREATED)
@limit_connection_requests
async def request_connection(
    request: Request,
    payload: ConnectionCreateRequest,
    acting_user_id: str = Depends(get_acting_user_id),
    service: ConnectionService = Depends(get_connection_service)
):
    """Ask another user to connect. Repeating a live request is a no-op."""
    connection_id = await service.request_connection(
        acting_user_id, payload.target_id, payload.request_message
    )
    return ConnectionCreateResponse(connection_id=connection_id)


@router.get("", response_model=ConnectionListResponse)
async def list_connections(
    user_id: str = Query(..., min_length=1),
    acting_user_id: str = Depends(get_acting_user_id),
    service: ConnectionService = Depends(get_connection_service)
):
    """Every connection the user takes part in, one per peer."""
    require_same_user(user_id, acting_user_id)
    connections = ConnectionService.dedupe_by_peer(user_id, await service.list_for_user(user_id))
    return ConnectionListResponse(
        user_id=user_id,
        total=len(connections),
        connections=[ConnectionResponse.from_record(c, viewer_id=user_id) for c in connections]
    )


@router.post("/{connection_id}/accept", response_model=ConnectionResponse)
async def accept_connection(
    connection_id: str,
    acting_user_id: str = Depends(get_acting_user_id),
    service: ConnectionService = Depends(get_connection_service)
):
    connection = await service.accept(connection_id, acting_user_id)
    return ConnectionResponse.from_record(connection, viewer_id=acting_user_id)


@router.post("/{connection_id}/reject", response_model=ConnectionResponse)
async def reject_connection(
    connection_id: str,
    acting_user_id: str = Depends(get_acting_user_id),
    service: ConnectionService = Depends(get_connection_service)
):
    connection = await service.reject(connection_id, acting_user_id)
    return ConnectionResponse.from_record(connection, viewer_id=acting_user_id)


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_connection(
    connection_id: str,
    acting_user_id: str = Depends(get_acting_user_id),
    service: ConnectionService = Depends(get_connection_service)
):
    """Remove the connection entirely; either participant may do this."""
    await service.remove(connection_id, acting_user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
