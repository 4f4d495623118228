"""Profile Model - read-only view of a student's profile."""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


class Sex(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    NON_BINARY = "Non-binary"


class Profile(BaseModel):
    """
    Student profile.

    Profiles are written by the profile pages, not by the match engine.
    `sex` is the category partner filters are checked against.
    """

    email: str
    name: Optional[str] = None
    sex: Optional[str] = Field(None, description="Male, Female or Non-binary")
    major: Optional[str] = None
    graduation_year: Optional[Union[str, int]] = None
    phone: Optional[str] = None
    avatar_path: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return all(
            value is not None and str(value).strip() != ""
            for value in (self.name, self.sex, self.major, self.graduation_year, self.phone)
        )

    @property
    def display_name(self) -> str:
        return (self.name or "").strip() or self.email
