# docpipeline/app/core/extractor.py

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from docpipeline.app.config import Settings, settings as default_settings
from docpipeline.app.core import prompts
from docpipeline.app.core.errors import ValidationCause, ValidationError
from docpipeline.app.core.llm_provider import LLMProvider
from docpipeline.app.core.normalize import clean_json_text, normalize_resume_data
from docpipeline.app.core.pdf_parser import PDFParser
from docpipeline.app.core.validator import require_author_name
from docpipeline.app.models.extraction import (
    ExtractedLetterData,
    ExtractedResumeData,
    ExtractionMetadata,
)
from docpipeline.app.models.llm import LLMRequest, LLMResponse, MediaType, Message, Role

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

TRUNCATED_STOP_REASONS = {"length", "max_tokens"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def merge_skills(*groups: Iterable[str]) -> List[str]:
    """Concatenate skill lists, dropping blanks and case-insensitive repeats."""
    seen = set()
    merged = []
    for group in groups:
        for skill in group:
            name = (skill or "").strip()
            if name and name.lower() not in seen:
                seen.add(name.lower())
                merged.append(name)
    return merged


class DocumentExtractor:
    """Turns document bytes into text, and text into resume or letter data."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str = "",
        max_tokens: int = 8192,
        pdf_parser: Optional[PDFParser] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens
        # None disables local PDF text extraction
        self.pdf_parser = pdf_parser
        self._clock = clock

    @classmethod
    def from_settings(cls, provider: LLMProvider, cfg: Settings = default_settings) -> "DocumentExtractor":
        return cls(
            provider,
            model=cfg.full_model_id(),
            max_tokens=cfg.LLM_MAX_TOKENS,
            pdf_parser=PDFParser() if cfg.LOCAL_PDF_EXTRACTION else None,
        )

    # ---------- Raw text ----------

    def extract_text(self, document: bytes, content_type: Union[str, MediaType]) -> str:
        media_type = content_type if isinstance(content_type, MediaType) else MediaType.from_content_type(content_type)

        if media_type.is_pdf and self.pdf_parser is not None:
            local_text = self.pdf_parser.try_extract_usable_text(document)
            if local_text:
                logger.info("Using local PDF text layer (%d chars), skipping model call", len(local_text))
                return local_text

        request = LLMRequest(
            system_prompt=prompts.DOCUMENT_EXTRACTION_SYSTEM,
            messages=[Message.image(Role.USER, media_type, document, prompts.DOCUMENT_EXTRACTION_USER)],
            model=self.model,
            max_tokens=self.max_tokens,
        )
        resp = self.provider.complete(request)
        text = resp.content.strip()
        if not text:
            raise ValidationError("text", ValidationCause.EMPTY_REQUIRED, "no text could be extracted from the document")
        logger.info(
            "Extracted %d chars of text (model=%s, in=%d, out=%d tokens)",
            len(text), resp.model, resp.input_tokens, resp.output_tokens,
        )
        return text

    # ---------- Structured ----------

    def extract_resume_data(self, text: str) -> ExtractedResumeData:
        resp = self._complete_structured(
            prompts.RESUME_EXTRACTION_SYSTEM,
            prompts.RESUME_EXTRACTION_USER.format(text=text),
            prompts.RESUME_OUTPUT_SCHEMA,
            "resume",
        )
        data = self._parse(resp, ExtractedResumeData)
        normalize_resume_data(data)
        data.metadata = self._metadata(resp, prompts.RESUME_EXTRACTION_VERSION)
        return data

    def extract_letter_data(self, text: str, profile_skills: Optional[Iterable[str]] = None) -> ExtractedLetterData:
        """Extract letter evidence; ``profile_skills`` are skills the candidate already claims."""
        user = prompts.LETTER_EXTRACTION_USER.format(text=text)
        skills = merge_skills(profile_skills or [])
        if skills:
            user = f"{user}\n\n{prompts.LETTER_SKILL_CONTEXT.format(skills=', '.join(skills))}"
        resp = self._complete_structured(
            prompts.LETTER_EXTRACTION_SYSTEM,
            user,
            prompts.LETTER_OUTPUT_SCHEMA,
            "reference_letter",
        )
        data = self._parse(resp, ExtractedLetterData)
        require_author_name(data.author.name)
        data.metadata = self._metadata(resp, prompts.LETTER_EXTRACTION_VERSION)
        return data

    def _complete_structured(self, system: str, user: str, schema: Dict[str, Any], name: str) -> LLMResponse:
        request = LLMRequest(
            system_prompt=system,
            messages=[Message.text(Role.USER, user)],
            model=self.model,
            max_tokens=self.max_tokens,
            output_schema=schema,
            schema_name=name,
        )
        return self.provider.complete(request)

    def _parse(self, resp: LLMResponse, model_cls: Type[M]) -> M:
        """Parse model JSON into ``model_cls``, mapping failures onto ValidationError.

        Constrained decoding makes this a formality; backends without it can
        return anything, so the same checks apply either way.
        """
        content = clean_json_text(resp.content)
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as exc:
            hint = " (response was truncated)" if resp.stop_reason in TRUNCATED_STOP_REASONS else ""
            raise ValidationError(
                "response", ValidationCause.INVALID_CHARACTER, f"model returned malformed JSON{hint}: {exc.msg}"
            ) from exc
        if not isinstance(payload, dict):
            raise ValidationError("response", ValidationCause.INVALID_CHARACTER, "model returned JSON that is not an object")

        try:
            return model_cls.model_validate(payload)
        except SchemaError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "response"
            # null in a required field counts as absent; any other wrong value is malformed
            if first["type"] == "missing" or first.get("input") is None:
                cause = ValidationCause.EMPTY_REQUIRED
            else:
                cause = ValidationCause.INVALID_CHARACTER
            raise ValidationError(field, cause, f"{field}: {first['msg']}") from exc

    def _metadata(self, resp: LLMResponse, prompt_version: str) -> ExtractionMetadata:
        return ExtractionMetadata(
            extracted_at=self._clock(),
            model_version=resp.model or self.model,
            prompt_version=prompt_version,
            input_tokens=resp.input_tokens,
            output_tokens=resp.output_tokens,
            duration_ms=resp.duration_ms,
        )
