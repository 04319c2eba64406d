from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class RentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    toolId: str
    userId: int
    userName: Optional[str] = None
    userEmail: Optional[str] = None
    rentDays: int = Field(default=1, ge=1)
    totalPrice: Optional[float] = Field(default=None, ge=0)


class LogActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    logId: int
    action: Literal["Repaired", "Remove", "MakeAvailable"]


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str
    password: str
    role: Optional[str] = "user"
