from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TurnRequestBody(BaseModel):
    user_id: str = Field(min_length=1, max_length=200)
    utterance: str = Field(min_length=1, max_length=6000)


class TurnActionModel(BaseModel):
    type: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ActionResultModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    succeeded: bool
    payload: dict[str, Any] | None = None
    error_kind: str | None = Field(default=None, alias="errorKind")
    error_message: str | None = Field(default=None, alias="errorMessage")


class TurnResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str
    reply: str
    action: TurnActionModel | None = None
    action_result: ActionResultModel | None = Field(default=None, alias="actionResult")
    should_refresh_downstream_data: bool = Field(
        default=False, alias="shouldRefreshDownstreamData"
    )


class MessageModel(BaseModel):
    role: str
    content: str
    timestamp: str


class HistoryResponse(BaseModel):
    session_id: str
    messages: list[MessageModel] = Field(default_factory=list)


class GoogleAuthorizeUrlResponse(BaseModel):
    url: str


class GoogleConnectRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=4096)
    timezone: str | None = Field(default=None, max_length=64)


class GoogleConnectResponse(BaseModel):
    provider: str = "google"
    user_id: str
    email: str | None = None
    timezone: str
    expires_at: str | None = None
