"""
API Gateway service for the Hustl Access Layer.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from fastapi import Header

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import AuthenticationError
from shared.logging import set_user_context
from service_auth.app.jwks import KeyFetcher, PublicKeyCache
from service_auth.app.validation import ProviderRegistry, TokenVerifier
from service_entitlements.app.models import AuthProvider
from service_entitlements.app.persistence import IdentityStore, build_identity_store
from service_entitlements.app.rules import EntitlementPolicy

from .chat import ChatConfig, ConfigurableChatService, GPTChatService
from .models import (
    AuthRequest,
    AuthResponse,
    ChatRequest,
    ChatResponse,
    GuestAuthRequest,
    MessageResponse,
    SetEntitlementsRequest,
    SetEntitlementsResponse,
    UpdatePromptRequest,
)


GATEWAY_PORT = 5565


class GatewayService(BaseService):
    """API Gateway service implementation.

    Collaborators are built from configuration unless injected, so tests
    can swap in an in-memory store, a stub verifier or a fake chat service.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[IdentityStore] = None,
        verifier: Optional[TokenVerifier] = None,
        chat: Optional[ConfigurableChatService] = None,
        policy: Optional[EntitlementPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__("gateway", GATEWAY_PORT, config)
        self.policy = policy or EntitlementPolicy.from_config(self.config)
        self.store = store or build_identity_store(self.config, self.policy, clock, self.metrics)

        if verifier is None:
            self.key_cache: Optional[PublicKeyCache] = PublicKeyCache(
                KeyFetcher(timeout=self.config.jwks_http_timeout, clock=clock),
                metrics=self.metrics,
            )
            verifier = TokenVerifier(
                self.key_cache,
                ProviderRegistry.from_config(self.config),
                key_ttl=timedelta(seconds=self.config.jwks_cache_ttl_seconds),
                clock=clock,
                metrics=self.metrics,
            )
        else:
            self.key_cache = getattr(verifier, "cache", None)
        self.verifier = verifier

        self.chat = chat or GPTChatService(
            self.config.openai_api_key,
            base_url=self.config.openai_base_url,
            config=ChatConfig(model=self.config.chat_model),
            timeout=self.config.chat_http_timeout,
        )

        @self.app.on_event("startup")
        async def _startup():
            await self.store.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.store.stop()

        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.post("/api/v1/guest", response_model=AuthResponse)
        async def guest_auth(request: GuestAuthRequest):
            """Find or create the guest user for a device."""
            user = await self.store.get_or_create(AuthProvider.GUEST, request.device_id, "")
            set_user_context(user.id)
            return AuthResponse(user=user)

        @self.app.post("/api/v1/auth", response_model=AuthResponse)
        async def provider_auth(
            request: AuthRequest,
            authorization: Optional[str] = Header(None),
        ):
            """Verify a provider identity token, then find or create the user."""
            token = self._bearer_token(authorization)
            identity = await self.verifier.verify(token, request.provider)
            user = await self.store.get_or_create(request.provider, request.username, request.email)
            set_user_context(user.id)
            self.logger.info(
                "User authenticated",
                user_id=user.id,
                provider=identity.provider,
                device_id=request.device_id
            )
            return AuthResponse(user=user)

        @self.app.post("/api/v1/next-message", response_model=ChatResponse)
        async def next_message(request: ChatRequest):
            """Consume one message of quota and reply to the conversation."""
            set_user_context(request.user_id)
            await self.store.check_and_increment(request.user_id)
            result = await self.chat.get_next_message(request.messages)
            return ChatResponse(result=result)

        @self.app.post("/api/v1/summarize", response_model=ChatResponse)
        async def summarize(request: ChatRequest):
            """Summarize a conversation for an existing user without consuming quota."""
            set_user_context(request.user_id)
            await self.store.get_user(request.user_id)
            result = await self.chat.summarize(request.messages)
            return ChatResponse(result=result)

        @self.app.post("/api/v1/set-entitlements", response_model=SetEntitlementsResponse)
        async def set_entitlements(request: SetEntitlementsRequest):
            """Move a user onto the given subscription."""
            update = self.policy.apply_subscription(request.subscription)
            user = await self.store.set_entitlements(request.username, update)
            self.logger.info(
                "Subscription changed",
                user_id=user.id,
                subscription_type=request.subscription.type.value
            )
            return SetEntitlementsResponse(user=user)

        @self.app.post("/api/v1/update-config", response_model=MessageResponse)
        async def update_config(request: ChatConfig):
            self.chat.update_config(request)
            return MessageResponse(message="Config updated successfully")

        @self.app.post("/api/v1/update-prompt", response_model=MessageResponse)
        async def update_prompt(request: UpdatePromptRequest):
            self.chat.update_initial_prompt(request.prompt)
            return MessageResponse(message="Prompt updated successfully")

    @staticmethod
    def _bearer_token(authorization: Optional[str]) -> str:
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError(
                "Authorization header missing or invalid",
                code="MISSING_BEARER_TOKEN"
            )
        return authorization[7:].strip()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report identity store health and key cache size."""
        store_health = await self.store.health_check()
        dependencies = {"store": store_health.get("status", "unknown")}
        if self.key_cache is not None:
            dependencies["key_cache_entries"] = str(len(self.key_cache))
        return dependencies


def create_app(**kwargs):
    """Create FastAPI application."""
    service = GatewayService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
