from __future__ import annotations

import json
from hashlib import sha256

from gateway.domain.adapters import GatewayRequest
from gateway.domain.cache import OperationKind, RequestFingerprint


def compute_fingerprint(
    request: GatewayRequest,
    operation: OperationKind,
    namespace: str,
) -> RequestFingerprint:
    """Digest the cache-relevant subset of ``request``.

    Defaultable parameters are already substituted by ``cache_payload`` so
    requests that differ only by an omitted default collide.
    """

    raw = json.dumps(request.cache_payload(), sort_keys=True, ensure_ascii=False, default=str)
    digest = sha256(raw.encode("utf-8")).hexdigest()
    return RequestFingerprint(
        namespace=namespace,
        operation=operation,
        scope=request.cache_scope,
        digest=digest,
    )
