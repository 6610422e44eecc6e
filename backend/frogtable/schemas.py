from __future__ import annotations

from pydantic import BaseModel, Field, RootModel
from pydantic.config import ConfigDict
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from .executor import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, Ordering
from .models import Query


class HealthResponse(BaseModel):
    status: str = "ok"
    app: str
    sources: int
    queries: int
    subscribers: int
    jobs: List[Dict[str, Any]] = Field(default_factory=list)


# --- RPC (tagged on rpcType) ---
class ListQueriesRequest(BaseModel):
    rpcType: Literal["ListQueries"] = "ListQueries"


class ExecQueryRequest(BaseModel):
    rpcType: Literal["ExecQuery"] = "ExecQuery"
    name: str
    page: Optional[int] = Field(default=None, ge=1)
    page_size: Optional[int] = Field(default=None, ge=1)
    order_by: Optional[List[Ordering]] = None

    @property
    def effective_page(self) -> int:
        return self.page or DEFAULT_PAGE

    @property
    def effective_page_size(self) -> int:
        return self.page_size or DEFAULT_PAGE_SIZE


class RpcRequest(RootModel[Annotated[Union[ListQueriesRequest, ExecQueryRequest], Field(discriminator="rpcType")]]):
    """Body of POST /rpc; a missing or unknown `rpcType` is rejected."""


class ListQueriesResponse(BaseModel):
    rpcType: Literal["ListQueries"] = "ListQueries"
    queries: List[Query]


class ExecQueryResponse(BaseModel):
    rpcType: Literal["ExecQuery"] = "ExecQuery"
    total_count: int
    data: List[List[Any]]
    # Result schema as {"fields": [{"name", "data_type", "nullable"}], "metadata": {}}
    schema_: Dict[str, Any] = Field(alias="schema", serialization_alias="schema")

    model_config = ConfigDict(populate_by_name=True)


RpcResponse = Union[ListQueriesResponse, ExecQueryResponse]
