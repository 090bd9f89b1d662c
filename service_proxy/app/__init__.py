"""
JWT proxy sidecar package.

The proxy sits in front of an upstream HTTP service, verifies the bearer
credential of every request (a signed JWT or a shared secret), enforces the
configured claim filter, writes verified claims into headers and forwards
the request.

Structure:
- app.main: FastAPI app and route wiring.
- app.config: Settings, upstream target and startup validation.
- app.jwks: OpenID discovery, JWKS fetch and key cache.
- app.claims: Claim filter and claim-to-header mapper.
- app.validation: JWT validator and shared-secret authenticator.
- app.pipeline: Per-request authentication and rewrite steps.
- app.forwarder: httpx relay to the upstream service.
"""
