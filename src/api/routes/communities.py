"""Community directory endpoint."""

from fastapi import APIRouter, Request

from src import storage
from src.api.responses import wrap_response

router = APIRouter(prefix="/communities", tags=["communities"])


@router.get("")
async def list_communities(request: Request):
    communities = storage.list_communities(request.app.state.db)
    return wrap_response(communities, total=len(communities))
