from __future__ import annotations

from fastapi import Request

from gateway.application.services.gateway import Gateway


def get_gateway(request: Request) -> Gateway:
    """Return the Gateway container built at startup."""
    return request.app.state.gateway

