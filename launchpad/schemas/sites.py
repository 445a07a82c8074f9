from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SiteCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = None


class SiteUpdateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class SiteResponse(BaseModel):
    id: str
    name: str
    slug: str
    status: str
    publicUrl: Optional[str] = None
    version: int
    createdAt: datetime
    updatedAt: datetime


class DeploymentResponse(BaseModel):
    id: str
    siteId: str
    status: str
    version: int
    deployedUrl: Optional[str] = None
    deployedAt: Optional[datetime] = None
    fileCount: int = 0
    error: Optional[str] = None
    createdAt: datetime


class RejectedFileResponse(BaseModel):
    path: str
    reason: str


class UploadResponse(BaseModel):
    success: bool
    siteId: str
    slug: str
    filesReceived: int
    rejected: list[RejectedFileResponse] = Field(default_factory=list)
    url: Optional[str] = None
    deployment: Optional[DeploymentResponse] = None
    warning: Optional[str] = None
    purged: Optional[int] = None


class DeployResponse(BaseModel):
    success: bool
    url: Optional[str] = None
    deployment: Optional[DeploymentResponse] = None
    warning: Optional[str] = None


class SiteFileResponse(BaseModel):
    path: str
    key: str
    size: int
    url: str
    lastModified: Optional[datetime] = None


class DeleteSiteResponse(BaseModel):
    success: bool
    filesDeleted: int
    fileErrors: int


class EnvVarIn(BaseModel):
    key: str
    value: str = ""
    is_secret: bool = False


class EnvVarsReplaceRequest(BaseModel):
    envVars: list[EnvVarIn] = Field(default_factory=list)


class EnvVarResponse(BaseModel):
    id: str
    key: str
    value: str
    is_secret: bool
    createdAt: datetime
    updatedAt: datetime


class EnvVarsResponse(BaseModel):
    envVars: list[EnvVarResponse]
