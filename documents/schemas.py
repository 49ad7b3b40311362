"""
Pydantic schemas for the document and account endpoints.

Field names follow the JSON the portal's frontend already consumes
(camelCase on the wire, snake_case in Python).
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from documents.service import DeleteResult, DocumentView, UploadResult


class DocumentResponse(BaseModel):
    """
    One row of GET /api/documents.

    A document whose file is missing from the object store has size 0 and
    null lastModified/url; the UI labels it "file not found".
    """

    id: int
    title: str
    last_modified: Optional[datetime] = Field(None, serialization_alias="lastModified")
    size: int = 0
    url: Optional[str] = None
    status: str
    degraded: bool = False

    @classmethod
    def from_view(cls, view: DocumentView) -> "DocumentResponse":
        return cls(
            id=view.id,
            title=view.title,
            last_modified=view.last_modified,
            size=view.size or 0,
            url=view.access_url,
            status=view.status.value,
            degraded=view.degraded,
        )


class UploadedFile(BaseModel):
    id: int
    name: str
    type: Optional[str] = None
    size: int
    url: Optional[str] = None


class UploadResponse(BaseModel):
    message: str = "File uploaded successfully"
    file: UploadedFile

    @classmethod
    def from_result(cls, result: UploadResult) -> "UploadResponse":
        return cls(
            file=UploadedFile(
                id=result.record.id,
                name=result.record.title,
                type=result.content_type,
                size=result.size,
                url=result.access_url,
            )
        )


class DeleteResponse(BaseModel):
    message: str = "Document deleted successfully"
    id: int
    file_name: str = Field(..., serialization_alias="fileName")

    @classmethod
    def from_result(cls, result: DeleteResult) -> "DeleteResponse":
        return cls(id=result.id, file_name=result.title)


class SignupRequest(BaseModel):
    """Missing fields are reported as 400 by the route, not 422."""

    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[str] = None


class SignupResponse(BaseModel):
    message: str = "User created successfully"
    username: str
