# docpipeline/app/core/validator.py
"""Field rules applied to model output before anything is persisted."""

import unicodedata
from typing import List, Optional, TypeVar

from docpipeline.app.core.errors import ValidationCause, ValidationError
from docpipeline.app.models.extraction import ExtractedLetterData, ExtractedResumeData

T = TypeVar("T")

# Length limits, in characters
MAX_NAME_LENGTH = 200
MAX_EMAIL_LENGTH = 320  # RFC 5321
MAX_PHONE_LENGTH = 50
MAX_LOCATION_LENGTH = 200
MAX_SUMMARY_LENGTH = 2000
MAX_DESCRIPTION_LENGTH = 5000
MAX_QUOTE_LENGTH = 2000
MAX_SKILL_NAME_LENGTH = 100
MAX_COMPANY_LENGTH = 200
MAX_TITLE_LENGTH = 200
MAX_DATE_LENGTH = 10
MAX_GPA_LENGTH = 20

# List caps; extra entries are dropped rather than rejected
MAX_SKILLS_COUNT = 50
MAX_EXPERIENCE_COUNT = 20
MAX_EDUCATION_COUNT = 10
MAX_TESTIMONIAL_COUNT = 10

PLACEHOLDER_AUTHOR_NAMES = frozenset({"unknown"})

_MULTILINE_WHITESPACE = frozenset("\n\r\t")
# Unassigned, private-use, surrogate code points and the replacement character
# all point at a broken encoding somewhere upstream.
_REJECTED_CATEGORIES = frozenset({"Cn", "Co", "Cs"})
_BIDI_CONTROLS = frozenset(chr(c) for c in (*range(0x202A, 0x202F), *range(0x2066, 0x206A)))
_REPLACEMENT_CHAR = "\ufffd"


def require_author_name(name: Optional[str]) -> None:
    """A letter without a real author makes every mention in it unverifiable."""
    stripped = (name or "").strip()
    if not stripped:
        raise ValidationError("author.name", ValidationCause.EMPTY_REQUIRED, "author name is required")
    if stripped.lower() in PLACEHOLDER_AUTHOR_NAMES:
        raise ValidationError(
            "author.name",
            ValidationCause.EMPTY_REQUIRED,
            f"author name is required (got placeholder {stripped!r})",
        )


def _check_characters(field: str, value: str, multiline: bool) -> None:
    for ch in value:
        if ch in _MULTILINE_WHITESPACE:
            if multiline:
                continue
            raise ValidationError(field, ValidationCause.INVALID_CHARACTER, f"{field} must be a single line")
        category = unicodedata.category(ch)
        if (
            category == "Cc"
            or category in _REJECTED_CATEGORIES
            or ch in _BIDI_CONTROLS
            or ch == _REPLACEMENT_CHAR
        ):
            raise ValidationError(
                field,
                ValidationCause.INVALID_CHARACTER,
                f"{field} contains disallowed character U+{ord(ch):04X}",
            )


def sanitize_text(
    field: str,
    value: Optional[str],
    max_length: int,
    required: bool = False,
    multiline: bool = False,
) -> Optional[str]:
    """Normalize, trim and check one string field.

    Returns None for an absent optional value. Raises ValidationError when the
    value is required and empty, too long, or contains disallowed characters.
    """
    cleaned = unicodedata.normalize("NFC", value or "").strip()
    if not cleaned:
        if required:
            raise ValidationError(field, ValidationCause.EMPTY_REQUIRED, f"{field} is required")
        return None
    _check_characters(field, cleaned, multiline)
    if len(cleaned) > max_length:
        raise ValidationError(
            field,
            ValidationCause.FIELD_TOO_LONG,
            f"{field} is {len(cleaned)} characters, maximum is {max_length}",
        )
    return cleaned


def _cap(items: List[T], limit: int) -> List[T]:
    return items[:limit]


class ExtractedDataValidator:
    """Sanitizes extraction results in place and rejects ones that break a field rule."""

    def validate_resume_data(self, data: ExtractedResumeData) -> ExtractedResumeData:
        data.name = sanitize_text("name", data.name, MAX_NAME_LENGTH, required=True)
        data.email = sanitize_text("email", data.email, MAX_EMAIL_LENGTH)
        data.phone = sanitize_text("phone", data.phone, MAX_PHONE_LENGTH)
        data.location = sanitize_text("location", data.location, MAX_LOCATION_LENGTH)
        data.summary = sanitize_text("summary", data.summary, MAX_SUMMARY_LENGTH, multiline=True)

        skills = []
        for i, skill in enumerate(_cap(data.skills, MAX_SKILLS_COUNT)):
            cleaned = sanitize_text(f"skills[{i}]", skill, MAX_SKILL_NAME_LENGTH)
            if cleaned:
                skills.append(cleaned)
        data.skills = skills

        data.experience = _cap(data.experience, MAX_EXPERIENCE_COUNT)
        for i, exp in enumerate(data.experience):
            prefix = f"experience[{i}]"
            exp.company = sanitize_text(f"{prefix}.company", exp.company, MAX_COMPANY_LENGTH) or ""
            exp.title = sanitize_text(f"{prefix}.title", exp.title, MAX_TITLE_LENGTH) or ""
            exp.location = sanitize_text(f"{prefix}.location", exp.location, MAX_LOCATION_LENGTH)
            exp.start_date = sanitize_text(f"{prefix}.startDate", exp.start_date, MAX_DATE_LENGTH)
            exp.end_date = sanitize_text(f"{prefix}.endDate", exp.end_date, MAX_DATE_LENGTH)
            exp.description = sanitize_text(
                f"{prefix}.description", exp.description, MAX_DESCRIPTION_LENGTH, multiline=True
            )

        data.education = _cap(data.education, MAX_EDUCATION_COUNT)
        for i, edu in enumerate(data.education):
            prefix = f"education[{i}]"
            edu.institution = sanitize_text(f"{prefix}.institution", edu.institution, MAX_COMPANY_LENGTH) or ""
            edu.degree = sanitize_text(f"{prefix}.degree", edu.degree, MAX_TITLE_LENGTH)
            edu.field = sanitize_text(f"{prefix}.field", edu.field, MAX_TITLE_LENGTH)
            edu.start_date = sanitize_text(f"{prefix}.startDate", edu.start_date, MAX_DATE_LENGTH)
            edu.end_date = sanitize_text(f"{prefix}.endDate", edu.end_date, MAX_DATE_LENGTH)
            edu.gpa = sanitize_text(f"{prefix}.gpa", edu.gpa, MAX_GPA_LENGTH)
            edu.achievements = sanitize_text(
                f"{prefix}.achievements", edu.achievements, MAX_DESCRIPTION_LENGTH, multiline=True
            )

        data.confidence = min(max(data.confidence, 0.0), 1.0)
        return data

    def validate_letter_data(self, data: ExtractedLetterData) -> ExtractedLetterData:
        require_author_name(data.author.name)
        author = data.author
        author.name = sanitize_text("author.name", author.name, MAX_NAME_LENGTH, required=True)
        author.title = sanitize_text("author.title", author.title, MAX_TITLE_LENGTH)
        author.company = sanitize_text("author.company", author.company, MAX_COMPANY_LENGTH)

        testimonials = []
        for i, t in enumerate(_cap(data.testimonials, MAX_TESTIMONIAL_COUNT)):
            t.quote = sanitize_text(f"testimonials[{i}].quote", t.quote, MAX_QUOTE_LENGTH, multiline=True)
            if not t.quote:
                continue
            skills = []
            for j, raw in enumerate(t.skills_mentioned):
                cleaned = sanitize_text(f"testimonials[{i}].skillsMentioned[{j}]", raw, MAX_SKILL_NAME_LENGTH)
                if cleaned:
                    skills.append(cleaned)
            t.skills_mentioned = skills
            testimonials.append(t)
        data.testimonials = testimonials

        mentions = []
        for i, m in enumerate(_cap(data.skill_mentions, MAX_SKILLS_COUNT)):
            m.skill = sanitize_text(f"skillMentions[{i}].skill", m.skill, MAX_SKILL_NAME_LENGTH)
            if not m.skill:
                continue
            m.quote = sanitize_text(f"skillMentions[{i}].quote", m.quote, MAX_QUOTE_LENGTH, multiline=True) or ""
            m.context = sanitize_text(f"skillMentions[{i}].context", m.context, MAX_DESCRIPTION_LENGTH, multiline=True)
            mentions.append(m)
        data.skill_mentions = mentions

        for i, e in enumerate(data.experience_mentions):
            e.company = sanitize_text(f"experienceMentions[{i}].company", e.company, MAX_COMPANY_LENGTH) or ""
            e.role = sanitize_text(f"experienceMentions[{i}].role", e.role, MAX_TITLE_LENGTH) or ""
            e.quote = sanitize_text(f"experienceMentions[{i}].quote", e.quote, MAX_QUOTE_LENGTH, multiline=True) or ""

        discovered = []
        for i, d in enumerate(_cap(data.discovered_skills, MAX_SKILLS_COUNT)):
            d.skill = sanitize_text(f"discoveredSkills[{i}].skill", d.skill, MAX_SKILL_NAME_LENGTH)
            if not d.skill:
                continue
            d.quote = sanitize_text(f"discoveredSkills[{i}].quote", d.quote, MAX_QUOTE_LENGTH, multiline=True) or ""
            d.context = sanitize_text(f"discoveredSkills[{i}].context", d.context, MAX_DESCRIPTION_LENGTH, multiline=True)
            discovered.append(d)
        data.discovered_skills = discovered

        return data
