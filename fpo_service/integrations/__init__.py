"""fpo_service.integrations - External service gateway modules.

All outbound HTTP calls to the AAA (identity / access-control) service must
go through the gateway in this package, never via bare `requests` calls in
services or blueprints.

Every call is:
  - Authenticated (service token injected by the gateway)
  - Bounded by a per-call timeout
  - Retried with backoff for transient failures only
  - Returned as a structured GatewayResult (never raises)

Current gateways:
  aaa_gateway.AAAGateway - AAA service REST API
"""
