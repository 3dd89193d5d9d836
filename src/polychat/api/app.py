"""
HTTP transport for the completion controller.

'create_app' wires a 'CompletionController' and an 'AuthProvider' into a
FastAPI application. Handlers are thin: they resolve the user, call the
controller and let 'PolychatError' propagate to one exception handler that
maps the error's kind and status to an HTTP code and returns its payload.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from polychat.api.auth.base import AuthProvider
from polychat.conversation_database.controller import (
    ClientConversation,
    CompletionController,
    CompletionResponse,
    ConversationInput,
    SettingsOverride,
    SettingsUpdate,
    SystemPromptInput,
)
from polychat.conversation_database.data_models.conversation import Conversation
from polychat.conversation_database.data_models.settings import ConversationSettings
from polychat.conversation_database.data_models.system_prompt import SystemPrompt
from polychat.errors import ErrorStatus, InputError, PolychatError
from polychat.llms.base import Usage
from polychat.models.catalog import AIModelDescriptor

_STATUS_BY_KIND = {
    "InputError": 400,
    "AuthorizationError": 403,
    "NotFoundError": 404,
    "ConversationBusyError": 409,
    "ContextOverflowError": 422,
    "ProviderContentError": 422,
    "NotImplementedError": 501,
    "StoreError": 500,
    "DeadlineExceededError": 504,
}
_STATUS_BY_CLASS = {
    ErrorStatus.CLIENT: 400,
    ErrorStatus.UPSTREAM: 502,
    ErrorStatus.SERVER: 500,
}


def http_status_for(error: PolychatError) -> int:
    return _STATUS_BY_KIND.get(error.kind, _STATUS_BY_CLASS[error.status])


class MessageInput(BaseModel):
    content: str
    settings_override: SettingsOverride | None = None
    timeout: float | None = None


class RenameInput(BaseModel):
    title: str


class RevisionInput(BaseModel):
    text: str


def create_app(controller: CompletionController, auth_provider: AuthProvider) -> FastAPI:
    app = FastAPI(title="polychat")
    auth_provider.bind_to_app(app)
    current_user = auth_provider.dependency()

    @app.exception_handler(PolychatError)
    async def handle_polychat_error(request: Request, exc: PolychatError) -> JSONResponse:
        return JSONResponse(status_code=http_status_for(exc), content=exc.to_payload().model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = InputError(f"Invalid request: {exc.errors()}")
        return JSONResponse(status_code=400, content=error.to_payload().model_dump(mode="json"))

    @app.get("/models")
    async def list_models() -> list[AIModelDescriptor]:
        return controller.list_models()

    @app.post("/conversations", status_code=201)
    async def create_conversation(body: ConversationInput, user_id: str = current_user) -> ClientConversation:
        return await controller.create_conversation(user_id, body)

    @app.get("/conversations")
    async def list_conversations(user_id: str = current_user) -> list[Conversation]:
        return await controller.list_conversations(user_id)

    @app.get("/conversations/{conversation_id}")
    async def get_conversation(conversation_id: str, user_id: str = current_user) -> ClientConversation:
        return await controller.get_conversation(conversation_id, user_id)

    @app.patch("/conversations/{conversation_id}")
    async def rename_conversation(
        conversation_id: str, body: RenameInput, user_id: str = current_user
    ) -> Conversation:
        return await controller.rename_conversation(conversation_id, user_id, body.title)

    @app.patch("/conversations/{conversation_id}/settings")
    async def update_settings(
        conversation_id: str, body: SettingsUpdate, user_id: str = current_user
    ) -> ConversationSettings:
        return await controller.update_settings(conversation_id, user_id, body)

    @app.delete("/conversations/{conversation_id}", status_code=204)
    async def delete_conversation(conversation_id: str, user_id: str = current_user) -> None:
        await controller.delete_conversation(conversation_id, user_id)

    @app.get("/conversations/{conversation_id}/usage")
    async def get_usage(conversation_id: str, user_id: str = current_user) -> Usage:
        return await controller.get_usage(conversation_id, user_id)

    @app.post("/conversations/{conversation_id}/messages")
    async def submit_completion(
        conversation_id: str, body: MessageInput, user_id: str = current_user
    ) -> CompletionResponse:
        request = {
            "conversation_id": conversation_id,
            "content": body.content,
            "settings_override": body.settings_override,
        }
        return await controller.submit_completion(request, user_id, timeout=body.timeout)

    @app.get("/system-prompts")
    async def list_system_prompts(user_id: str = current_user) -> list[SystemPrompt]:
        return await controller.list_system_prompts(user_id)

    @app.post("/system-prompts", status_code=201)
    async def create_system_prompt(body: SystemPromptInput, user_id: str = current_user) -> SystemPrompt:
        return await controller.create_system_prompt(user_id, body)

    @app.post("/system-prompts/{prompt_id}/revisions", status_code=201)
    async def revise_system_prompt(prompt_id: str, body: RevisionInput, user_id: str = current_user) -> SystemPrompt:
        return await controller.revise_system_prompt(prompt_id, user_id, body.text)

    return app
