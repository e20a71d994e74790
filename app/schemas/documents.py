from datetime import datetime

from pydantic import BaseModel, Field


class DocumentIn(BaseModel):
    template_id: str
    inputs: dict[str, str] = Field(default_factory=dict)


class DocumentOut(BaseModel):
    id: str
    template_id: str
    document_content: str
    input_data: dict
    created_at: datetime
