from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ScheduleRegisterRequest(BaseModel):
    group_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("group_id", "groupId"))


class FormCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    title: str
    description: Optional[str] = None
    form_schema: Dict[str, Any] = Field(validation_alias=AliasChoices("schema", "form_schema"))
    activate: bool = False


class AssignFeedbackRequest(BaseModel):
    student_ids: Optional[List[str]] = Field(
        default=None, validation_alias=AliasChoices("student_ids", "studentIds")
    )
    use_active_form: bool = Field(default=True, validation_alias=AliasChoices("use_active_form", "useActiveForm"))
    force_active_form: bool = Field(
        default=False, validation_alias=AliasChoices("force_active_form", "forceActiveForm")
    )
    overwrite_pending: bool = Field(
        default=False, validation_alias=AliasChoices("overwrite_pending", "overwritePending")
    )
    seed_answers: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("seed_answers", "seedAnswers")
    )


class TransitionRequest(BaseModel):
    action: str
    elevated: bool = False


class AnswersPatchRequest(BaseModel):
    answers: Dict[str, Any]


class PreviewRequest(BaseModel):
    kind: str = "student"
    assignment_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("assignment_id", "assignmentId")
    )
    student_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("student_id", "studentId"))
    view_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("view_key", "viewKey"))
