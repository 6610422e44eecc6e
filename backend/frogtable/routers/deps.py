from __future__ import annotations

from fastapi import Request

from ..engine import ServingEngine


def get_engine(request: Request) -> ServingEngine:
    return request.app.state.engine
