"""
Encrypted cookie session middleware.
"""

import copy
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from shared.errors import AccessLayerException, SessionOverflowError
from shared.logging import get_logger, get_request_id
from shared.metrics import MetricsCollector
from .crypto.codec import DecodeResult, DecodeStatus, SessionCodec
from .lifecycle.policy import LifecyclePolicy

# Browsers drop cookies larger than this (RFC 6265 minimum guarantee).
MAX_COOKIE_SIZE = 4096

STATUS_MISSING = "missing"


class EncryptedSessionMiddleware(BaseHTTPMiddleware):
    """
    Loads ``request.session`` from an encrypted cookie and writes it back.

    The decoded session is exposed through ``scope["session"]`` so handlers
    use ``request.session`` as with Starlette's own session middleware. After
    the handler runs the lifecycle policy decides whether a new cookie is
    issued; an unchanged, still-fresh session produces no ``Set-Cookie``.
    """

    def __init__(
        self,
        app: ASGIApp,
        codec: SessionCodec,
        policy: LifecyclePolicy,
        *,
        cookie_name: str = "session",
        path: str = "/",
        domain: Optional[str] = None,
        secure: bool = False,
        httponly: bool = True,
        samesite: str = "lax",
        metrics: Optional[MetricsCollector] = None,
        max_cookie_size: int = MAX_COOKIE_SIZE,
    ) -> None:
        super().__init__(app)
        self.codec = codec
        self.policy = policy
        self.cookie_name = cookie_name
        self.path = path
        self.domain = domain
        self.secure = secure
        self.httponly = httponly
        self.samesite = samesite.lower()
        self.metrics = metrics
        self.max_cookie_size = max_cookie_size
        self.logger = get_logger("session.middleware")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        raw_cookie = request.cookies.get(self.cookie_name)
        result = self.codec.decode(raw_cookie, self.policy.expire_after)
        status = self._status(raw_cookie, result)
        self._count("session_decode_total", outcome=status)

        original: Dict[str, Any] = result.session if result.is_ok else {}
        request.scope["session"] = copy.deepcopy(original)
        request.state.session_status = status

        response = await call_next(request)

        try:
            self._commit(request, response, original, result, raw_cookie is not None)
        except AccessLayerException as exc:
            # FastAPI exception handlers do not run for errors raised here.
            self.logger.error(
                "Session cookie could not be written",
                path=request.url.path,
                code=exc.code,
                details=exc.details
            )
            if self.metrics:
                self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(get_request_id()).model_dump()
            )
        return response

    def _status(self, raw_cookie: Optional[str], result: DecodeResult) -> str:
        if raw_cookie is None:
            return STATUS_MISSING
        if result.status is DecodeStatus.INVALID:
            self.logger.warning("Session cookie rejected", reason=result.reason)
        elif result.status is DecodeStatus.EXPIRED:
            self.logger.info("Session cookie expired", issued_at=result.timestamp)
        return result.status.value

    def _commit(
        self,
        request: Request,
        response: Response,
        original: Dict[str, Any],
        result: DecodeResult,
        cookie_present: bool,
    ) -> None:
        session = request.scope.get("session") or {}

        if not session:
            if cookie_present:
                response.delete_cookie(
                    self.cookie_name,
                    path=self.path,
                    domain=self.domain,
                    secure=self.secure,
                    httponly=self.httponly,
                    samesite=self.samesite,
                )
                self._count("session_reissue_total", reason="cleared")
            return

        timestamp = result.timestamp if result.is_ok else None
        reason = self.policy.reissue_reason(original, session, timestamp, self.codec.now())
        if reason is None:
            return

        token = self.codec.encode(session, self.policy.expire_after)
        if len(token) > self.max_cookie_size:
            raise SessionOverflowError(len(token), self.max_cookie_size)

        response.set_cookie(
            self.cookie_name,
            token,
            max_age=self.policy.cookie_max_age(),
            path=self.path,
            domain=self.domain,
            secure=self.secure,
            httponly=self.httponly,
            samesite=self.samesite,
        )
        self._count("session_reissue_total", reason=reason)
        if self.metrics:
            self.metrics.observe_histogram("session_token_bytes", len(token))
        self.logger.debug("Session cookie issued", reason=reason, size=len(token))

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)
