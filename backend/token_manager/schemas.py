"""Request parameters shared by the API and the operations."""

from pydantic import BaseModel, Field


class TokenParams(BaseModel):
    user_id: str
    project_id: str
    bridgehead_ids: list[str] = Field(default_factory=list)


class ProjectQueryParams(BaseModel):
    bk: str
    project_id: str


class TokensQueryParams(BaseModel):
    user_id: str
    bk: str
    project_id: str
