from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from ..engine import ServingEngine
from ..schemas import (
    ExecQueryRequest,
    ExecQueryResponse,
    ListQueriesRequest,
    ListQueriesResponse,
    RpcRequest,
    RpcResponse,
)
from .deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rpc"])


@router.post("/rpc", response_model=RpcResponse)
def rpc(payload: RpcRequest, engine: ServingEngine = Depends(get_engine)):
    """Single request/response entry point, dispatched on `rpcType`.

    ExecQuery refreshes the sources the query depends on before running it.
    Engine errors propagate to the application's exception handlers.
    """
    match payload.root:
        case ListQueriesRequest():
            return ListQueriesResponse(queries=engine.list_queries())
        case ExecQueryRequest() as request:
            refreshed = engine.refresh_sources(request.name)
            logger.debug(f"[RPC] ExecQuery {request.name}: refreshed {[s.name for s in refreshed]}")
            result = engine.exec_query(
                request.name,
                page=request.effective_page,
                page_size=request.effective_page_size,
                order_by=request.order_by or (),
            )
            return ExecQueryResponse(total_count=result.total_count, data=result.data, schema=result.schema)
