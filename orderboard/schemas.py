# orderboard/schemas.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import Stage, Technology


class Credentials(BaseModel):
    email: str
    password: str


class Registration(Credentials):
    invite_code: str = Field(default="", alias="inviteCode")

    model_config = ConfigDict(populate_by_name=True)


class SessionResponse(BaseModel):
    token: str
    uid: str
    email: str


class GateResponse(BaseModel):
    state: str
    view: Optional[str] = None
    user: Optional[str] = None
    error: Optional[str] = None


class OrderCreate(BaseModel):
    orderNumber: str = ""
    clientName: str = ""
    deliveryDate: str = ""
    printType: List[str] = []


class FieldEdit(BaseModel):
    field: str
    value: Optional[str] = ""


class StageChange(BaseModel):
    stage: Stage


class TechnologyToggle(BaseModel):
    technology: Technology


class OrdersResponse(BaseModel):
    orders: List[Dict[str, Any]]
    count: int
    sort: Dict[str, str]
    search: str = ""


class CreatedResponse(BaseModel):
    id: str


class WriteResponse(BaseModel):
    ok: bool
