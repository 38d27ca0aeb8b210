"""
Assist Service package for the Assist Access Layer.

The assist service drafts chat replies with a hosted model, enforcing:
- Authentication: bearer session tokens checked against the identity store
- Entitlements: team membership, active subscription and seat capacity
- Rate limiting: fixed per-caller windows with a process-local fallback
- Usage accounting: daily token and request totals per team

Structure:
- app.main: FastAPI app, routes and backend wiring.
- app.domain: Models, payload validation, prompt building and the pipeline.
- app.identity: Credential parsing and identity stores.
- app.entitlements: Entitlement resolution.
- app.ratelimit: Fixed window limiter and counters.
- app.upstream: Model endpoint client.
- app.usage: Usage accountant.
- app.persistence: Record store contract and backends.
"""
