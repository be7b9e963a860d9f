"""
Gateway package for the Hustl Access Layer.

Public HTTP surface of the system:

- app.main: GatewayService wiring the token verifier, the identity store,
  the entitlement policy and the chat service behind the /api/v1 routes.
- app.chat: chat completion client with runtime-swappable config and prompt.
- app.models: request and response bodies.

All collaborators are constructed once per service instance; errors raised
by them are mapped to HTTP statuses by the shared base service.
"""
