from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CredentialsRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(CredentialsRequest):
    name: Optional[str] = None


class UserOut(BaseModel):
    id: int
    email: str
    name: Optional[str] = None


class UserResponse(BaseModel):
    user: UserOut


class RegisterResponse(BaseModel):
    message: str
    user: UserOut


class TokenResponse(BaseModel):
    access_token: str
    expires_in: int
    token_type: str = "bearer"


class OwnerOut(BaseModel):
    name: Optional[str] = None
    email: str


class ProblemOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    title: str
    description: Optional[str] = None
    problem_type: str
    proposed_solution: Optional[str] = None
    priority: str
    status: str
    latitude: float
    longitude: float
    image_url: Optional[str] = None
    created_at: str
    updated_at: str
    user: OwnerOut

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ProblemOut":
        return cls(
            id=record["id"],
            title=record["title"],
            description=record.get("description"),
            problem_type=record["problem_type"],
            proposed_solution=record.get("proposed_solution"),
            priority=record["priority"],
            status=record["status"],
            latitude=record["latitude"],
            longitude=record["longitude"],
            image_url=record.get("image_url"),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            user=OwnerOut(name=record.get("owner_name"), email=record["owner_email"]),
        )


class MessageResponse(BaseModel):
    message: str


class UploadResponse(BaseModel):
    url: str


class ProblemTypesResponse(BaseModel):
    problem_types: List[str]
    statuses: Dict[str, str]
    priorities: Dict[str, str]


__all__ = [
    "CredentialsRequest",
    "MessageResponse",
    "OwnerOut",
    "ProblemOut",
    "ProblemTypesResponse",
    "RegisterRequest",
    "RegisterResponse",
    "TokenResponse",
    "UploadResponse",
    "UserOut",
    "UserResponse",
]
