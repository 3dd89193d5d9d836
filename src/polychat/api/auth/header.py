from fastapi import Request

from polychat.api.auth.base import AuthProvider

USER_ID_HEADER = "X-User-Id"


class HeaderAuthProvider(AuthProvider):
    """Trusts a user id header injected by an authenticating gateway."""

    def __init__(self, header_name: str = USER_ID_HEADER) -> None:
        self.header_name = header_name

    def resolve_user_id(self, request: Request) -> str | None:
        return request.headers.get(self.header_name, "").strip() or None
