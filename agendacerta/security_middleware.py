"""
CORS middleware for the browser frontends
"""

from starlette.datastructures import Headers
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

# Set by the response itself
BODY_HEADERS = ("content-length", "content-type")


class PreflightCORSMiddleware(CORSMiddleware):
    """
    Starlette's CORSMiddleware, but an accepted preflight is answered with
    204 and an empty body. Rejected preflights keep the 400 explanation.
    """

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response

        headers = {
            key: value for key, value in response.headers.items() if key not in BODY_HEADERS
        }
        return Response(status_code=204, headers=headers)
