from typing import List, Optional

from pydantic import BaseModel


class ModelInfo(BaseModel):
    name: str
    size: Optional[int] = None
    modified_at: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    database: str
    ollama: str
    availableModels: List[str]
    timestamp: str
