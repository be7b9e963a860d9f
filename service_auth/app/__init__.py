"""
Auth package for the Hustl Access Layer.

Verifies identity tokens from third-party providers:

- app.jwks: key set fetching and the process-wide public key cache.
- app.validation: provider registry and the token verifier.

Design notes:
- Module import must not perform network calls; keys are fetched on
  demand when a verification needs them.
- The cache is constructed once at startup and handed to the verifier;
  nothing here is reached through module-level globals.
"""
