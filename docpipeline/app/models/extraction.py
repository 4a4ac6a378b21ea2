# docpipeline/app/models/extraction.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    # Stored and exchanged with the model as camelCase JSON
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ExtractionMetadata(_CamelModel):
    """Audit trail tying a persisted result to the model and prompt that produced it."""
    extracted_at: datetime
    model_version: str
    prompt_version: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0


# ---------- Resume ----------

class WorkExperience(_CamelModel):
    company: str = ""
    title: str = ""
    location: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_current: bool = False
    description: Optional[str] = None


class Education(_CamelModel):
    institution: str = ""
    degree: Optional[str] = None
    field: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    gpa: Optional[str] = None
    achievements: Optional[str] = None


class ExtractedResumeData(_CamelModel):
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    summary: Optional[str] = None
    experience: List[WorkExperience] = Field(default_factory=list)
    education: List[Education] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    metadata: Optional[ExtractionMetadata] = None


# ---------- Reference letter ----------

class AuthorRelationship(str, Enum):
    MANAGER = "manager"
    PEER = "peer"
    DIRECT_REPORT = "direct_report"
    CLIENT = "client"
    MENTOR = "mentor"
    PROFESSOR = "professor"
    COLLEAGUE = "colleague"
    OTHER = "other"


class SkillCategory(str, Enum):
    TECHNICAL = "technical"
    SOFT = "soft"
    DOMAIN = "domain"


class ExtractedAuthor(_CamelModel):
    name: str = ""
    title: Optional[str] = None
    company: Optional[str] = None
    relationship: AuthorRelationship = AuthorRelationship.OTHER

    @field_validator("relationship", mode="before")
    @classmethod
    def _coerce_relationship(cls, value):
        if isinstance(value, str):
            value = value.strip().lower().replace(" ", "_").replace("-", "_")
            if value not in AuthorRelationship._value2member_map_:
                return AuthorRelationship.OTHER
        return value or AuthorRelationship.OTHER


class ExtractedTestimonial(_CamelModel):
    quote: str
    skills_mentioned: List[str] = Field(default_factory=list)


class ExtractedSkillMention(_CamelModel):
    skill: str
    quote: str = ""
    context: Optional[str] = None


class ExtractedExperienceMention(_CamelModel):
    company: str = ""
    role: str = ""
    quote: str = ""


class DiscoveredSkill(_CamelModel):
    skill: str
    category: SkillCategory = SkillCategory.TECHNICAL
    quote: str = ""
    context: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value):
        if isinstance(value, str) and value.strip().lower() not in SkillCategory._value2member_map_:
            return SkillCategory.DOMAIN
        if isinstance(value, str):
            return value.strip().lower()
        return value or SkillCategory.DOMAIN


class ExtractedLetterData(_CamelModel):
    author: ExtractedAuthor = Field(default_factory=ExtractedAuthor)
    testimonials: List[ExtractedTestimonial] = Field(default_factory=list)
    skill_mentions: List[ExtractedSkillMention] = Field(default_factory=list)
    experience_mentions: List[ExtractedExperienceMention] = Field(default_factory=list)
    discovered_skills: List[DiscoveredSkill] = Field(default_factory=list)
    metadata: Optional[ExtractionMetadata] = None
