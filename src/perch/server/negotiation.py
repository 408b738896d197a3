"""Content negotiation — maps handler return values to Response objects.

isinstance-based dispatch, no magic::

    Response              -> pass through
    RedirectSignal        -> 307/308 with Location
    str                   -> 200, text/html
    bytes                 -> 200, application/octet-stream
    dict / list           -> 200, application/json
    (value, int)          -> negotiate value, override status
    (value, int, dict)    -> negotiate value, override status + headers
"""

import json as json_module
from collections.abc import Mapping
from typing import Any

from perch.http.response import Response
from perch.rendering.signals import RedirectSignal


def redirect_response(signal: RedirectSignal) -> Response:
    return Response(body="").with_status(signal.status).with_header("Location", signal.location)


def negotiate(value: Any) -> Response:
    """Convert a protocol handler's return value to a Response.

    Not-found and error signals are handled by the caller, which owns
    the fallback pages.
    """
    match value:
        case Response():
            return value
        case RedirectSignal():
            return redirect_response(value)
        case str():
            return Response(body=value)
        case bytes():
            return Response(body=value, content_type="application/octet-stream")
        case Mapping() | list():
            return Response(
                body=json_module.dumps(value, default=str),
                content_type="application/json",
            )
        case (inner, int() as status):
            return negotiate(inner).with_status(status)
        case (inner, int() as status, Mapping() as headers):
            return negotiate(inner).with_status(status).with_headers(headers)
        case None:
            return Response(body="").with_status(204)
    msg = (
        f"Handler returned {type(value).__name__}; expected Response, str, bytes, "
        "dict, list or a (value, status[, headers]) tuple"
    )
    raise TypeError(msg)
