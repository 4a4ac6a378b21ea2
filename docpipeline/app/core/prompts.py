# docpipeline/app/core/prompts.py
"""Extraction prompts and output schemas.

Bump the matching version whenever a prompt or schema changes; the version is
stored with every extraction result.
"""

DOCUMENT_EXTRACTION_VERSION = "1.0.0"
RESUME_EXTRACTION_VERSION = "1.3.0"
LETTER_EXTRACTION_VERSION = "1.2.0"

# ---------- Raw text extraction ----------

DOCUMENT_EXTRACTION_SYSTEM = (
    "You are a precise document transcription engine. You receive a scanned or "
    "digital document (resume, CV or reference letter) and reproduce its text."
)

DOCUMENT_EXTRACTION_USER = (
    "Transcribe all text in this document exactly as written. Preserve reading "
    "order, headings, bullet points and paragraph breaks. Do not summarise, "
    "translate, correct or add commentary. Output plain text only."
)

# ---------- Resume ----------

RESUME_EXTRACTION_SYSTEM = (
    "You extract structured profile data from resume text. Only use information "
    "present in the text; use null for optional fields that are not stated. "
    "Dates use ISO format YYYY-MM-DD; use 01 for an unknown day or month and "
    "use null when the year cannot be determined. Set confidence between "
    "0.0 and 1.0 to reflect how complete and legible the source was."
)

RESUME_EXTRACTION_USER = "Extract the candidate's profile from this resume:\n\n<resume>\n{text}\n</resume>"

# ---------- Reference letter ----------

LETTER_EXTRACTION_SYSTEM = (
    "You extract credibility evidence from reference letters. Identify the "
    "author and their relationship to the candidate, quote testimonials "
    "verbatim, and list every skill and role the letter vouches for together "
    "with the supporting quote. If the author's name is not stated, return an "
    "empty string for it; never invent a name. Relationship is one of: "
    "manager, peer, direct_report, client, mentor, professor, colleague, other. "
    "Skill category is one of: technical, soft, domain."
)

LETTER_EXTRACTION_USER = "Extract the evidence from this reference letter:\n\n<letter>\n{text}\n</letter>"

LETTER_SKILL_CONTEXT = (
    "The candidate already lists these skills: {skills}. Prefer these exact "
    "spellings in skillMentions when the letter vouches for one of them, and "
    "only report a skill under discoveredSkills when it is not on this list."
)


# Schemas follow the strict structured-output rules: every object closes its
# property set and lists every property as required; optional values are nullable.

def _string(description: str, nullable: bool = False) -> dict:
    return {"type": ["string", "null"] if nullable else "string", "description": description}


def _date(description: str) -> dict:
    return _string(f"{description} in ISO format YYYY-MM-DD, or null if the year cannot be determined.", nullable=True)


def _object(properties: dict) -> dict:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def _array(items: dict, description: str = "") -> dict:
    schema = {"type": "array", "items": items}
    if description:
        schema["description"] = description
    return schema


RESUME_OUTPUT_SCHEMA = _object({
    "name": _string("Full name of the candidate"),
    "email": _string("Email address if found", nullable=True),
    "phone": _string("Phone number if found", nullable=True),
    "location": _string("City, State/Country if found", nullable=True),
    "summary": _string("Professional summary or objective if found", nullable=True),
    "experience": _array(_object({
        "company": _string("Company name"),
        "title": _string("Job title"),
        "location": _string("Job location if found", nullable=True),
        "startDate": _date("Start date"),
        "endDate": _date("End date; null when isCurrent is true"),
        "isCurrent": {"type": "boolean", "description": "True if this is the current job"},
        "description": _string("Job description or responsibilities", nullable=True),
    }), "Work experience entries"),
    "education": _array(_object({
        "institution": _string("School/University name"),
        "degree": _string("Degree type, e.g. 'Bachelor of Science'", nullable=True),
        "field": _string("Field of study", nullable=True),
        "startDate": _date("Start date"),
        "endDate": _date("Graduation/end date"),
        "gpa": _string("GPA such as 3.8 or 3.8/4.0, only if explicitly stated", nullable=True),
        "achievements": _string("Notable achievements or honors", nullable=True),
    }), "Education entries"),
    "skills": _array({"type": "string"}, "List of skills"),
    "confidence": {"type": "number", "description": "Confidence in extraction accuracy (0.0 to 1.0)"},
})

LETTER_OUTPUT_SCHEMA = _object({
    "author": _object({
        "name": _string("Full name of the letter's author; empty if not stated"),
        "title": _string("Author's job title", nullable=True),
        "company": _string("Author's organization", nullable=True),
        "relationship": {
            "type": "string",
            "enum": ["manager", "peer", "direct_report", "client", "mentor", "professor", "colleague", "other"],
        },
    }),
    "testimonials": _array(_object({
        "quote": _string("Verbatim quote suitable for display on a profile"),
        "skillsMentioned": _array({"type": "string"}),
    })),
    "skillMentions": _array(_object({
        "skill": _string("Skill the author vouches for"),
        "quote": _string("Verbatim supporting quote"),
        "context": _string("Where or how the skill was shown", nullable=True),
    })),
    "experienceMentions": _array(_object({
        "company": _string("Company named in the letter"),
        "role": _string("Role the candidate held there"),
        "quote": _string("Verbatim supporting quote"),
    })),
    "discoveredSkills": _array(_object({
        "skill": _string("Skill implied by the letter"),
        "category": {"type": "string", "enum": ["technical", "soft", "domain"]},
        "quote": _string("Verbatim supporting quote"),
        "context": _string("Where or how the skill was shown", nullable=True),
    })),
})
