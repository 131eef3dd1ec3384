from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True
    )


class CoverIn(CamelModel):
    organization_name: str | None = None
    report_name: str | None = None
    tagline: str | None = None


class LetterIn(CamelModel):
    include_opening_letter: bool = False
    letter_title: str | None = None
    letter_subtitle: str | None = None
    letter_content: str | None = None
    letter_image1_caption: str | None = None
    letter_image2_caption: str | None = None


class FooterIn(CamelModel):
    department: str | None = None
    street_address: str | None = None
    city_state_zip: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None


class ReviewIn(CamelModel):
    submitter_name: str | None = None
    submitter_email: str | None = None
    additional_notes: str | None = None
    confirmed: bool = False


class ContentCardIn(CamelModel):
    title: str | None = ""
    body: str | None = ""


class StatIn(CamelModel):
    label: str | None = None
    value: str | None = None


class SectionImageIn(CamelModel):
    url: str | None = None
    caption: str | None = None
    is_chart: bool = False


class SectionIn(CamelModel):
    order: int | None = None
    title: str | None = None
    content: str | None = ""
    content_cards: list[ContentCardIn] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    image_captions: list[str] = Field(default_factory=list)
    images: list[SectionImageIn] = Field(default_factory=list)
    chart_link: str | None = None
    chart_caption: str | None = None
    design_notes: str | None = None
    stats: list[StatIn] = Field(default_factory=list)

    @field_validator("image_captions", mode="before")
    @classmethod
    def split_caption_lines(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [line.strip() for line in v.split("\n") if line.strip()]
        return v


class SubmitRequest(CamelModel):
    phase: str | None = None
    project_id: str | None = None
    contributor_session_id: str | None = None
    cover: CoverIn | None = None
    letter: LetterIn | None = None
    footer: FooterIn | None = None
    review: ReviewIn | None = None
    submission_id: str | None = None
    logo_url: str | None = None
    headshot_url: str | None = None
    letter_image1_url: str | None = None
    letter_image2_url: str | None = None
    sections: list[SectionIn] = Field(default_factory=list)


class SubmissionUpdateRequest(CamelModel):
    cover: CoverIn | None = None
    letter: LetterIn | None = None
    footer: FooterIn | None = None
    review: ReviewIn | None = None


class DraftSaveRequest(CamelModel):
    session_id: str | None = None
    share_id: str | None = None
    draft_data: dict[str, Any] | None = None


class SessionCreateRequest(CamelModel):
    share_id: str | None = None


class ProjectCreateRequest(CamelModel):
    name: str | None = None
    organization_name: str | None = None
    description: str | None = None
    year: str | None = None
    allow_public_submissions: bool = True
    org_id: str | None = None


class ProjectUpdateRequest(CamelModel):
    name: str | None = None
    organization_name: str | None = None
    description: str | None = None
    year: str | None = None
    status: str | None = None
    allow_public_submissions: bool | None = None


class ProjectDraftRequest(CamelModel):
    name: str | None = None
    data: dict[str, Any] | None = None


class NotificationPatchRequest(CamelModel):
    notification_id: str | None = None
    mark_all_read: bool = False


class InvitationCreateRequest(CamelModel):
    organization_id: str | None = None
    email_address: str | None = None
    role: str | None = None


class MemberPatchRequest(CamelModel):
    organization_id: str | None = None
    member_id: str | None = None
    role: str | None = None


class OrganizationCreateRequest(CamelModel):
    name: str | None = None
    slug: str | None = None


class ExportRequest(CamelModel):
    data: dict[str, Any]
    source: str = "asset-collection"


class ScoringRequest(CamelModel):
    answers: dict[str, int] = Field(default_factory=dict)
    township_name: str | None = None
    person_name: str | None = None
