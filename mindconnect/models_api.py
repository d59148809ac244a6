from __future__ import annotations
from datetime import datetime
from math import isfinite
import re
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from typing import Annotated, Any, Dict, Optional, Union
from .config import POST_CATEGORIES


def _require_number(v: Any) -> Any:
    # JSON numbers only: strings, booleans, null, NaN and inf are rejected
    # here instead of failing later during scoring.
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ValueError("answer must be a number")
    if isinstance(v, float) and not isfinite(v):
        raise ValueError("answer must be a finite number")
    return v


AnswerValue = Annotated[Union[int, float], BeforeValidator(_require_number)]

_QUESTION_ID = re.compile(r"[1-9][0-9]*")


def _require_question_id(v: Any) -> int:
    # Canonical decimal ids only, so "1" and "01" can't both land on question 1.
    if isinstance(v, int) and not isinstance(v, bool) and v > 0:
        return v
    if isinstance(v, str) and _QUESTION_ID.fullmatch(v):
        return int(v)
    raise ValueError("question id must be a positive integer without leading zeros")


QuestionId = Annotated[int, BeforeValidator(_require_question_id)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LocalLoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = ""

    @field_validator("email")
    @classmethod
    def looks_like_email(cls, v: str) -> str:
        v = v.strip()
        local, _, domain = v.partition("@")
        if not local or not domain:
            raise ValueError("must be an email address")
        return v


class ProfileCreateRequest(_CamelModel):
    name: str = Field(min_length=1)
    relation: str = Field(min_length=1)
    birth_date: Optional[datetime] = Field(default=None, alias="birthDate")
    gender: Optional[str] = None


class TestSubmitRequest(_CamelModel):
    profile_id: int = Field(alias="profileId")
    answers: Dict[QuestionId, AnswerValue] = Field(min_length=1)
    summary: Optional[str] = None


class PostCreateRequest(_CamelModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    category: str = Field(min_length=1)

    @field_validator("category")
    @classmethod
    def known_category(cls, v: str) -> str:
        if v not in POST_CATEGORIES:
            raise ValueError(f"must be one of {', '.join(POST_CATEGORIES)}")
        return v


class CommentCreateRequest(_CamelModel):
    content: str = Field(min_length=1)
