"""
Session Service package for the encrypted session layer.

Keeps client session state in an encrypted, authenticated cookie so no
server-side session store is needed:

- app.crypto: Secret key validation and the session token codec.
- app.lifecycle: Expiry and reissue policy for session tokens.
- app.middleware: ASGI middleware that decodes the inbound cookie and
  writes a fresh one when the policy asks for it.
- app.main: Application entrypoint that wires configuration and routes.

Design notes:
- Decoding never raises for client input; a forged, stale or corrupted
  cookie simply yields an empty session.
- Key material and policy are fixed at startup and shared read-only.
"""
