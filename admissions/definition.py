from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from .schemas import StepDefinition


class FormDefinition(BaseModel):
    """Static configuration of one multi-step form.

    `version` is the number of steps; stored drafts carry it as
    `metadata.totalSteps`, which is how the persistence layer spots an older shape.
    """

    steps: List[StepDefinition]
    defaults: Dict[str, Any]
    labels: Dict[str, str] = Field(default_factory=dict)
    attachment_prefixes: List[str] = Field(default_factory=lambda: ["documents."])
    min_items: Dict[str, int] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_steps(self) -> "FormDefinition":
        ids = [s.id for s in self.steps]
        if ids != list(range(1, len(ids) + 1)):
            raise ValueError(f"step ids must be 1..N in order, got {ids}")
        return self

    @property
    def version(self) -> int:
        return len(self.steps)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def step(self, step_id: int) -> Optional[StepDefinition]:
        if 1 <= step_id <= len(self.steps):
            return self.steps[step_id - 1]
        return None

    def required_steps(self) -> List[StepDefinition]:
        return [s for s in self.steps if s.is_required]

    def default_record(self) -> Dict[str, Any]:
        record = copy.deepcopy(self.defaults)
        record["metadata"] = {
            "currentStep": 1,
            "totalSteps": self.total_steps,
            "completedSteps": [],
            "lastSaved": "",
            "status": "draft",
        }
        return record

    def label_for(self, path: str) -> str:
        if path in self.labels:
            return self.labels[path]
        name = path.rsplit(".", 1)[-1]
        return self.labels.get(name, name)

    def is_attachment(self, path: str) -> bool:
        return any(path.startswith(p) for p in self.attachment_prefixes)


_DEFAULTS: Dict[str, Any] = {
    "personalInfo": {
        "title": "",
        "firstName": "",
        "lastName": "",
        "dateOfBirth": "",
        "gender": "",
        "nationality": "",
        "countryOfResidence": "",
        "phone": "",
        "email": "",
        "alternativeEmail": "",
        "address": {"street": "", "city": "", "postalCode": "", "country": ""},
        "isStaff": False,
        "staffId": "",
    },
    "education": {
        "currentLevel": "",
        "institution": "",
        "fieldOfStudy": "",
        "graduationDate": "",
        "gpa": "",
        "transcriptUploaded": False,
        "previousEducation": [],
    },
    "experience": {"workExperience": [], "skills": [], "languages": []},
    "programInfo": {
        "programType": "",
        "preferredStartDate": "",
        "studyMode": "full-time",
        "campus": "",
        "specialization": "",
        "previousApplications": False,
        "fundingSource": "",
        "canTravel": False,
        "travelReason": "",
        "whyJoin": "",
        "engagedInProjects": False,
        "projectDetails": "",
    },
    "essays": {
        "personalStatement": "",
        "motivationLetter": "",
        "careerGoals": "",
        "whyThisProgram": "",
        "additionalInfo": "",
    },
    "references": [],
    "documents": {
        "cv": None,
        "transcript": None,
        "motivationLetter": None,
        "letterOfInterest": None,
        "additionalDocuments": [],
    },
}


ADMISSIONS_FORM = FormDefinition(
    steps=[
        StepDefinition(
            id=1,
            title="Personal Information",
            description="Basic personal details and contact information",
            validation_fields=[
                "personalInfo.firstName",
                "personalInfo.lastName",
                "personalInfo.email",
                "personalInfo.phone",
            ],
        ),
        StepDefinition(
            id=2,
            title="Educational Background",
            description="Your academic history and qualifications",
            validation_fields=["education.currentLevel", "education.institution", "education.fieldOfStudy"],
        ),
        StepDefinition(
            id=3,
            title="Program Information",
            description="Why you want to join the fellowship",
            validation_fields=["programInfo.whyJoin"],
        ),
        StepDefinition(
            id=4,
            title="Documents",
            description="Upload required documents",
            validation_fields=["documents.letterOfInterest", "documents.cv"],
        ),
        StepDefinition(
            id=5,
            title="Review & Submit",
            description="Review your application before submission",
            validation_fields=[],
        ),
    ],
    defaults=_DEFAULTS,
    labels={
        "firstName": "First Name",
        "lastName": "Last Name",
        "email": "Email",
        "phone": "Phone Number",
        "currentLevel": "Current Education Level",
        "institution": "Institution",
        "fieldOfStudy": "Field of Study",
        "whyJoin": "Why you want to join the fellowship",
        "letterOfInterest": "Letter of Interest",
        "cv": "Curriculum Vitae (CV)",
        "references": "References",
    },
    attachment_prefixes=["documents."],
    min_items={"references": 2},
)
