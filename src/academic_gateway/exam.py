"""Exam records exchanged with the application layer.

Backends answer in camelCase JSON; models accept both alias and
field names and serialize back to camelCase with ``by_alias=True``.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExamQuestion(_CamelModel):
    id: str = ""
    label: str = ""
    text: str
    marks: float = 0
    suggested_answer: str = ""
    diagram_required: bool = False
    diagram_description: str | None = None
    enabled: bool = True


class ExamAnalysis(_CamelModel):
    """Structured record extracted from uploaded exam pages."""

    exam_title: str = ""
    total_marks: float = 0
    questions: list[ExamQuestion] = Field(default_factory=list)


class RefinedAnswer(_CamelModel):
    """Refinement result for one question; ``failed`` marks a placeholder."""

    label: str
    text: str
    marks: float = 0
    refined_answer: str
    failed: bool = False
