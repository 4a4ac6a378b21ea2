"""
Unit tests for ExtractedDataValidator and its field helpers.
"""

import pytest

from docpipeline.app.core.errors import ValidationCause, ValidationError
from docpipeline.app.core.validator import (
    MAX_NAME_LENGTH,
    MAX_SKILLS_COUNT,
    MAX_TESTIMONIAL_COUNT,
    ExtractedDataValidator,
    require_author_name,
    sanitize_text,
)
from docpipeline.app.models.extraction import (
    ExtractedAuthor,
    ExtractedLetterData,
    ExtractedResumeData,
    ExtractedSkillMention,
    ExtractedTestimonial,
    WorkExperience,
)


@pytest.fixture
def validator():
    return ExtractedDataValidator()


def _letter(**overrides):
    data = ExtractedLetterData(
        author=ExtractedAuthor(name="Jane Doe", title="VP Engineering", company="Acme Corp", relationship="manager"),
        testimonials=[ExtractedTestimonial(quote="Great engineer.", skills_mentioned=["Go"])],
    )
    for key, value in overrides.items():
        setattr(data, key, value)
    return data


class TestSanitizeText:
    """Single-field normalisation and checks."""

    def test_strips_and_normalizes(self):
        """Surrounding whitespace is trimmed and text is NFC-normalised."""
        assert sanitize_text("name", "  José ", 50) == "José"

    def test_optional_empty_is_none(self):
        """Absent optional values become None."""
        assert sanitize_text("email", "   ", 50) is None
        assert sanitize_text("email", None, 50) is None

    def test_required_empty_raises(self):
        """Required fields reject blank values."""
        with pytest.raises(ValidationError) as exc_info:
            sanitize_text("name", "", 50, required=True)
        assert exc_info.value.cause is ValidationCause.EMPTY_REQUIRED

    def test_too_long_raises(self):
        """Values past the limit are field-too-long."""
        with pytest.raises(ValidationError) as exc_info:
            sanitize_text("name", "x" * (MAX_NAME_LENGTH + 1), MAX_NAME_LENGTH)
        assert exc_info.value.cause is ValidationCause.FIELD_TOO_LONG
        assert exc_info.value.field == "name"

    def test_newline_only_in_multiline_fields(self):
        """Line breaks are allowed in prose fields and rejected in single-line ones."""
        assert sanitize_text("summary", "line one\nline two", 100, multiline=True) == "line one\nline two"
        with pytest.raises(ValidationError) as exc_info:
            sanitize_text("name", "Jane\nDoe", 100)
        assert exc_info.value.cause is ValidationCause.INVALID_CHARACTER

    @pytest.mark.parametrize("bad", ["\x00", "\x07", "\u202e", "\ufffd", "\ue000"])
    def test_rejects_control_and_broken_characters(self, bad):
        """Control, bidi-override, private-use and replacement characters are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            sanitize_text("summary", f"abc{bad}def", 100, multiline=True)
        assert exc_info.value.cause is ValidationCause.INVALID_CHARACTER

    def test_accepts_unicode_letters(self):
        """Non-ASCII names are fine."""
        assert sanitize_text("name", "Zoë Ångström 李雷", 100) == "Zoë Ångström 李雷"


class TestRequireAuthorName:
    """Placeholder and empty author names."""

    @pytest.mark.parametrize("name", [None, "", "   ", "unknown", "Unknown", " UNKNOWN "])
    def test_rejects(self, name):
        """Empty and placeholder names are empty-required."""
        with pytest.raises(ValidationError) as exc_info:
            require_author_name(name)
        assert exc_info.value.field == "author.name"
        assert exc_info.value.cause is ValidationCause.EMPTY_REQUIRED

    def test_accepts_real_name(self):
        """A real name passes."""
        require_author_name("Jane Doe")


class TestValidateResumeData:
    """Whole-resume validation."""

    def test_cleans_fields(self, validator):
        """Whitespace is trimmed across nested entries and blank skills dropped."""
        data = ExtractedResumeData(
            name="  Alex Smith ",
            email=" ",
            skills=["Python", "  ", " Go "],
            experience=[WorkExperience(company=" Acme ", title="Engineer", description="Built\nthings")],
            confidence=1.7,
        )

        result = validator.validate_resume_data(data)

        assert result.name == "Alex Smith"
        assert result.email is None
        assert result.skills == ["Python", "Go"]
        assert result.experience[0].company == "Acme"
        assert result.experience[0].description == "Built\nthings"
        assert result.confidence == 1.0

    def test_missing_name_fails(self, validator):
        """Name is required."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_resume_data(ExtractedResumeData(name=""))
        assert exc_info.value.field == "name"

    def test_nested_field_path_in_error(self, validator):
        """Errors name the offending list entry."""
        data = ExtractedResumeData(
            name="Alex",
            experience=[WorkExperience(company="Acme"), WorkExperience(company="Bad\x00Co")],
        )

        with pytest.raises(ValidationError) as exc_info:
            validator.validate_resume_data(data)

        assert exc_info.value.field == "experience[1].company"

    def test_caps_skill_list(self, validator):
        """Excess skills are trimmed, not rejected."""
        data = ExtractedResumeData(name="Alex", skills=[f"skill-{i}" for i in range(MAX_SKILLS_COUNT + 10)])

        assert len(validator.validate_resume_data(data).skills) == MAX_SKILLS_COUNT


class TestValidateLetterData:
    """Whole-letter validation."""

    def test_valid_letter_passes(self, validator):
        """A complete letter comes back unchanged in meaning."""
        result = validator.validate_letter_data(_letter())

        assert result.author.name == "Jane Doe"
        assert result.testimonials[0].quote == "Great engineer."

    @pytest.mark.parametrize("name", ["", "unknown"])
    def test_author_required(self, validator, name):
        """Empty and placeholder authors are rejected here as well."""
        data = _letter()
        data.author.name = name

        with pytest.raises(ValidationError) as exc_info:
            validator.validate_letter_data(data)

        assert exc_info.value.cause is ValidationCause.EMPTY_REQUIRED

    def test_blank_entries_are_dropped(self, validator):
        """Testimonials and mentions without content disappear."""
        data = _letter(
            testimonials=[ExtractedTestimonial(quote="  "), ExtractedTestimonial(quote="Reliable.")],
            skill_mentions=[ExtractedSkillMention(skill=" "), ExtractedSkillMention(skill="SQL", quote="knows SQL")],
        )

        result = validator.validate_letter_data(data)

        assert [t.quote for t in result.testimonials] == ["Reliable."]
        assert [m.skill for m in result.skill_mentions] == ["SQL"]

    def test_caps_testimonials(self, validator):
        """At most the configured number of testimonials is kept."""
        data = _letter(testimonials=[ExtractedTestimonial(quote=f"quote {i}") for i in range(15)])

        assert len(validator.validate_letter_data(data).testimonials) == MAX_TESTIMONIAL_COUNT

    def test_author_title_too_long(self, validator):
        """Over-long author fields are field-too-long."""
        data = _letter()
        data.author.title = "t" * 500

        with pytest.raises(ValidationError) as exc_info:
            validator.validate_letter_data(data)

        assert exc_info.value.field == "author.title"
        assert exc_info.value.cause is ValidationCause.FIELD_TOO_LONG
