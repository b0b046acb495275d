"""Request-scoped access to the service container."""

from typing import AbstractSet, Mapping, Optional, Tuple

from fastapi import HTTPException, Request

from linkguard.services import LinkGuardServices


def get_services(request: Request) -> LinkGuardServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


def participant_origin(
    request: Request,
    trusted_proxies: AbstractSet[str],
) -> Tuple[Optional[str], Mapping[str, str]]:
    """
    Participant IP and the headers allowed to hint at their country.

    Forwarding and country headers count only when the connection comes from
    a trusted proxy. The participant is then the right-most X-Forwarded-For
    hop that is not itself a trusted proxy.
    """
    peer = request.client.host if request.client else None
    if peer is None or peer not in trusted_proxies:
        return peer, {}

    hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop, request.headers
    return (hops[0] if hops else peer), request.headers
