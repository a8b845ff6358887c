"""
Placement Guard - Profile Models

Profiles arrive from the profile service as a tagged union keyed by
`role`. They are validated here, at the boundary, and nowhere else.
"""
from __future__ import annotations
from datetime import date
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class Location(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    postcode: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class SalaryRange(BaseModel):
    min: float
    max: float


class Education(BaseModel):
    institution: str
    degree: str
    grade: Optional[str] = None
    year: Optional[int] = None


class WorkSample(BaseModel):
    title: str
    description: Optional[str] = None
    url: Optional[str] = None


class VideoProfile(BaseModel):
    url: str
    duration: int = Field(..., description="Length in seconds")


class Reference(BaseModel):
    name: str
    relationship: Optional[str] = None
    text: str


class CandidateProfile(BaseModel):
    """Full candidate profile, as held by the profile service."""
    role: Literal["candidate"] = "candidate"
    candidate_id: str
    email: str
    first_name: str
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    phone: Optional[str] = None
    location: Location = Field(default_factory=Location)
    bio: str = ""
    career_goals: str = ""
    industry_interests: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    education: List[Education] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    work_type: Optional[str] = None
    salary_range: Optional[SalaryRange] = None
    work_samples: List[WorkSample] = Field(default_factory=list)
    achievements: List[str] = Field(default_factory=list)
    video_profile: Optional[VideoProfile] = None
    references: List[Reference] = Field(default_factory=list)


class EmployerProfile(BaseModel):
    """Employer organisation profile."""
    role: Literal["employer"] = "employer"
    employer_id: str
    company_name: str
    email: str
    industry: Optional[str] = None
    size: Optional[str] = None


Profile = Annotated[Union[CandidateProfile, EmployerProfile], Field(discriminator="role")]

_profile_adapter = TypeAdapter(Profile)


def parse_profile(payload: dict) -> Union[CandidateProfile, EmployerProfile]:
    """Validate a raw payload into the matching profile variant."""
    return _profile_adapter.validate_python(payload)
