"""
Correlation middleware for inbound HTTP requests.

This middleware is the boundary where a unit of work begins: it builds
the correlation carrier for each request, publishes it for the
duration of the request, and records the request with the telemetry
facade once it has been served.
"""

import time
import uuid
from datetime import timedelta
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from dualsink.errors.exceptions import MissingServiceNameError
from dualsink.telemetry.carrier import (
    Carrier,
    current_carrier_var,
    with_operation_id,
    with_service_name,
)
from dualsink.telemetry.facade import TelemetryFacade

# Header carrying the operation id between services
OPERATION_ID_HEADER = "X-Operation-ID"


class CorrelationMiddleware(BaseHTTPMiddleware):
    """
    Middleware that attaches a correlation carrier to each request.

    The operation id is:
    1. Extracted from the X-Operation-ID header if present
    2. Generated as a new UUID if not present

    The carrier is stored in request.state.carrier and in
    current_carrier_var, the operation id is echoed in the response
    headers, and one request record is emitted after the response.
    """

    def __init__(
        self,
        app: ASGIApp,
        telemetry: TelemetryFacade,
        service_name: str,
        header: str = OPERATION_ID_HEADER
    ):
        """
        Initialize the middleware.

        Args:
            app: The ASGI application to wrap
            telemetry: Facade the request records are emitted to
            service_name: Service name placed in every request's carrier
            header: Header carrying the operation id

        Raises:
            MissingServiceNameError: If service_name is empty
        """
        if not service_name:
            raise MissingServiceNameError()
        super().__init__(app)
        self.telemetry = telemetry
        self.service_name = service_name
        self.header = header

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        operation_id = request.headers.get(self.header)
        if not operation_id:
            operation_id = str(uuid.uuid4())

        carrier = with_service_name(with_operation_id(Carrier(), operation_id), self.service_name)
        request.state.carrier = carrier
        token = current_carrier_var.set(carrier)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[self.header] = operation_id
            return response
        finally:
            duration = timedelta(seconds=time.perf_counter() - started)
            source = request.client.host if request.client else ""
            try:
                self.telemetry.request(
                    carrier,
                    request.method,
                    str(request.url),
                    duration,
                    str(status_code),
                    status_code < 400,
                    source,
                    f"{request.method} {request.url.path}",
                )
            finally:
                # Reset so the carrier does not leak into the next request
                current_carrier_var.reset(token)
