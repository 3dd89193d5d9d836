"""
Identity resolution for the HTTP transport.

Issuing sessions happens upstream of this service. An 'AuthProvider' only
answers "which user sent this request", and 'create_app' injects the answer
into every route through 'AuthProvider.dependency()'. Ownership of
conversations and system prompts is then enforced by the controller, not here.
"""

from abc import ABC, abstractmethod

from fastapi import Depends, FastAPI, HTTPException, Request
from loguru import logger


class AuthProvider(ABC):
    """Resolves the calling user's id from a request."""

    @abstractmethod
    def resolve_user_id(self, request: Request) -> str | None:
        """Return the user id carried by 'request', or None if there is none."""

    def get_current_user_id(self, request: Request) -> str:
        user_id = self.resolve_user_id(request)
        if not user_id:
            logger.debug(f"Unauthenticated request to {request.url.path}")
            raise HTTPException(status_code=401, detail="Not authenticated")
        return user_id

    def dependency(self):
        return Depends(self.get_current_user_id)

    def bind_to_app(self, app: FastAPI) -> None:
        """Register any routes the provider needs. The default adds '/auth/me'."""

        @app.get("/auth/me")
        async def whoami(user_id: str = self.dependency()) -> dict[str, str]:
            return {"user_id": user_id}
