"""
CV Schemas - Structured output of the CV parser
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class PersonalInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    nic: Optional[str] = None
    linkedin: Optional[str] = None
    github: Optional[str] = None


class EducationEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    degree: Optional[str] = None
    field_of_study: Optional[str] = None
    institution: Optional[str] = None
    period: Optional[str] = None
    details: Optional[str] = None


class ExperienceEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    company: Optional[str] = None
    period: Optional[str] = None
    description: Optional[str] = None


class ProjectEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    technologies: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    link: Optional[str] = None


class ParsedCV(BaseModel):
    """Best-effort structured CV; every section may be empty."""
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    education: List[EducationEntry] = Field(default_factory=list)
    experience: List[ExperienceEntry] = Field(default_factory=list)
    projects: List[ProjectEntry] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return (
            not any(self.personal_info.model_dump().values())
            and not self.education
            and not self.experience
            and not self.projects
        )
