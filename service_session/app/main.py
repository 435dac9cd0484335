"""
Session service for the encrypted session layer.
"""

import json
import math
from typing import Any, Callable, Dict, Optional

from fastapi import Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ValidationError
from .crypto.codec import SessionCodec
from .crypto.keys import validate_secret
from .lifecycle.policy import LifecyclePolicy
from .middleware import EncryptedSessionMiddleware

SERVICE_NAME = "session"
SERVICE_PORT = 8013


def _reject_constant(name: str):
    raise ValueError(f"Non-finite number {name} is not valid JSON")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Number {text} is out of range")
    return value


class SessionService(BaseService):
    """Session service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, clock: Optional[Callable[[], float]] = None):
        config = config or get_config(SERVICE_NAME, SERVICE_PORT)

        # Key material and policy are fixed for the lifetime of the process;
        # a missing or weak secret aborts startup here.
        self.secret_key = validate_secret(config.session_secret)
        self.codec = SessionCodec(
            self.secret_key,
            digest=config.session_digest,
            compress=config.session_compress,
            clock=clock,
        )
        self.policy = LifecyclePolicy(
            expire_after=config.session_expire_after,
            refresh_interval=config.session_refresh_interval,
        )

        super().__init__(SERVICE_NAME, SERVICE_PORT, config)

        self.logger.info(
            "Session codec configured",
            digest=self.codec.digest_name,
            compress=self.codec.compress,
            expire_after=self.policy.expire_after,
            refresh_interval=self.policy.refresh_interval
        )

        self._setup_session_routes()

    def _setup_middleware(self):
        """Set up middleware; the session layer runs inside request timing."""
        self.app.add_middleware(
            EncryptedSessionMiddleware,
            codec=self.codec,
            policy=self.policy,
            cookie_name=self.config.session_cookie_name,
            path=self.config.session_cookie_path,
            domain=self.config.session_cookie_domain,
            secure=self.config.session_cookie_secure,
            httponly=self.config.session_cookie_httponly,
            samesite=self.config.session_cookie_samesite,
            metrics=self.metrics,
        )
        super()._setup_middleware()

    def _setup_session_routes(self):
        """Set up session-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Encrypted Session Layer - Session Service",
                "version": "1.0.0"
            }

        @self.app.get("/session")
        async def read_session(request: Request):
            """Return the current session and how the inbound cookie decoded."""
            return {
                "session": request.session,
                "status": request.state.session_status
            }

        @self.app.put("/session")
        async def update_session(request: Request):
            """Merge a JSON object into the session."""
            payload = await self._read_object(request)
            request.session.update(payload)
            return {"session": request.session}

        @self.app.delete("/session/{key}")
        async def delete_session_key(key: str, request: Request):
            """Remove one key from the session."""
            removed = key in request.session
            request.session.pop(key, None)
            return {"removed": removed, "session": request.session}

        @self.app.delete("/session")
        async def clear_session(request: Request):
            """Clear the session; the cookie is removed from the client."""
            request.session.clear()
            return {"session": {}}

    async def _read_object(self, request: Request) -> Dict[str, Any]:
        body = await request.body()
        try:
            payload = json.loads(body, parse_float=_finite_float, parse_constant=_reject_constant)
        except ValueError:
            raise ValidationError("Request body must be valid JSON") from None
        if not isinstance(payload, dict):
            raise ValidationError(
                "Request body must be a JSON object",
                details={"type": type(payload).__name__}
            )
        return payload


def create_app(config: Optional[ServiceConfig] = None, clock: Optional[Callable[[], float]] = None):
    """Create the session service FastAPI application."""
    return SessionService(config, clock).app


if __name__ == "__main__":
    SessionService().run()
