from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

class CreateTemplateBody(BaseModel):
    # URL, data URL or bare base64
    image: str
    name: str = ""
    coords: List[Any] = Field(min_length=4, max_length=4)

class ToggleBody(BaseModel):
    key: str
    enabled: bool

class EnabledBody(BaseModel):
    enabled: bool

class RenameBody(BaseModel):
    key: str
    name: str

class CoordsBody(BaseModel):
    key: str
    # Validated by the manager so the caller gets its exact reason
    coords: List[Any]

class UserBody(BaseModel):
    user_id: int = Field(ge=0)

class TemplateSummary(BaseModel):
    key: str
    name: Optional[str] = None
    coords: Optional[str] = None
    enabled: bool = True
    pixelCount: int = 0

class CreatedTemplate(BaseModel):
    key: str
    name: str
    coords: List[int]
    pixelCount: int
    fragments: List[str]
    status: str

class ImportResponse(BaseModel):
    accepted: bool
    imported: List[str]
    skipped: List[str]
    failed_fragments: List[str]
    message: str

class MessageResponse(BaseModel):
    status: str = "ok"
    message: str
