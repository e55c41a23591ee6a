from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union


class ListMessagesRequest(BaseModel):
    # Lenient on purpose: parsed with parse_max_results
    max_results: Optional[Union[int, str]] = None
    query: Optional[str] = None

class GetMessageRequest(BaseModel):
    message_id: str = Field(min_length=1)

class ToolInvokeRequest(BaseModel):
    tool: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

class ErrorDetail(BaseModel):
    code: int
    message: str
    description: str
    troubleshooting: str
    message_id: Optional[str] = None

class ListMessagesResponse(BaseModel):
    messages: List[dict] = Field(default_factory=list)
    count: int = 0
    query: Optional[str] = None

class ListLabelsResponse(BaseModel):
    labels: List[dict] = Field(default_factory=list)
    count: int = 0
