# docpipeline/app/core/normalize.py
"""Clean-up for text artefacts that PDF/OCR extraction leaves in model output."""

import re
from typing import Optional

from docpipeline.app.models.extraction import ExtractedResumeData

_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
_CODE_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([\]}])")


def normalize_spaced_text(text: Optional[str]) -> Optional[str]:
    """Collapse fully letter-spaced text: "J o h n  D o e" -> "John Doe".

    Only applies when most tokens are single characters; partially split
    words are left alone.
    """
    if not text:
        return text
    words = text.split()
    if len(words) <= 2:
        return " ".join(words)
    single = sum(1 for w in words if len(w) == 1)
    if single / len(words) <= 0.5:
        return " ".join(words)

    # Runs of single characters are one word; double spaces mark word breaks
    merged = []
    for chunk in re.split(r"\s{2,}", text.strip()):
        parts = chunk.split()
        if all(len(p) == 1 for p in parts):
            merged.append("".join(parts))
        else:
            merged.append(" ".join(parts))
    return " ".join(merged)


def normalize_date(value: Optional[str]) -> Optional[str]:
    """Return an ISO YYYY-MM-DD date or None when the value is unusable."""
    if not value or value == "null":
        return None
    cleaned = value.replace(" ", "")
    if cleaned.startswith("-"):
        return None
    match = _ISO_DATE.search(cleaned)
    if not match or match.group(0).startswith("0000"):
        return None
    return match.group(0)


def clean_json_text(content: str) -> str:
    """Strip Markdown code fences and trailing commas around model JSON."""
    content = _CODE_FENCE_START.sub("", (content or "").strip())
    if content.endswith("```"):
        content = content[:-3]
    return _TRAILING_COMMA.sub(r"\1", content.strip())


def normalize_resume_data(data: ExtractedResumeData) -> None:
    data.name = normalize_spaced_text(data.name) or ""
    data.email = normalize_spaced_text(data.email)
    data.location = normalize_spaced_text(data.location)
    for edu in data.education:
        edu.institution = normalize_spaced_text(edu.institution) or ""
        edu.degree = normalize_spaced_text(edu.degree)
        edu.field = normalize_spaced_text(edu.field)
        edu.start_date = normalize_date(edu.start_date)
        edu.end_date = normalize_date(edu.end_date)
    for exp in data.experience:
        exp.company = normalize_spaced_text(exp.company) or ""
        exp.title = normalize_spaced_text(exp.title) or ""
        exp.location = normalize_spaced_text(exp.location)
        exp.start_date = normalize_date(exp.start_date)
        exp.end_date = normalize_date(exp.end_date)
    data.skills = [normalize_spaced_text(s) or "" for s in data.skills]
