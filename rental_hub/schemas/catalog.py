from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ToolUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(ge=0)
    beforeImageRef: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("beforeImageRef", "beforeImage"),
    )
    description: Optional[str] = None
    specs: Optional[Dict[str, Any]] = None
