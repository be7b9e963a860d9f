"""
Request and response models for the Gateway API.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from service_entitlements.app.models import AuthProvider, Subscription, User


class GuestAuthRequest(BaseModel):
    device_id: str = Field(..., min_length=1, description="Device identifier used as the guest username")


class AuthRequest(BaseModel):
    """Sign-in with a provider identity token carried in the Authorization header."""
    provider: AuthProvider
    username: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    device_id: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    user: User


class ChatRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    messages: List[str] = Field(default_factory=list)


class ChatResponse(BaseModel):
    result: str


class SetEntitlementsRequest(BaseModel):
    username: str = Field(..., min_length=1)
    subscription: Subscription = Field(default_factory=Subscription)


class SetEntitlementsResponse(BaseModel):
    message: str = "Entitlements updated successfully"
    user: Optional[User] = None


class UpdatePromptRequest(BaseModel):
    prompt: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    message: str
