"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API and the WebSocket wire format.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.stream import (
    ActiveStreamData,
    ChatMessage,
    ChatRequest,
    HealthData,
    SessionSnapshot,
    SessionState,
    StartStreamRequest,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
