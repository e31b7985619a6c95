"""
CV Parser Service using Gemini for structured data extraction.
Turns extracted CV text into personal info, education, experience and
projects, then fills personal-info gaps with regex heuristics.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import ExtractionServiceError
from ..schemas.cv import ParsedCV

logger = logging.getLogger(__name__)


# ============================================================================
# CV Parsing Prompt
# ============================================================================

CV_PARSER_PROMPT = """
You are a CV/resume parser. Extract structured information from the CV text
below and answer with ONE JSON object only - no markdown, no commentary.

Use exactly this shape (use null for anything not present, [] for empty lists):

{
  "personal_info": {
    "name": string, "email": string, "phone": string, "address": string,
    "nic": string, "linkedin": string, "github": string
  },
  "education": [
    {"degree": string, "field_of_study": string, "institution": string,
     "period": string, "details": string}
  ],
  "experience": [
    {"title": string, "company": string, "period": string, "description": string}
  ],
  "projects": [
    {"name": string, "technologies": [string], "description": string, "link": string}
  ]
}

RULES:
- Copy values from the CV; never invent data.
- Periods are free text as written in the CV (e.g. "2019 - 2023", "Jan 2021 - Present").
- Keep descriptions short (max 3 sentences each).

CV TEXT:
"""

MAX_CV_CHARS = 30000


@dataclass
class StructuringResult:
    cv: ParsedCV
    soft_failure: Optional[str] = None


# ============================================================================
# Output normalization
# ============================================================================

def _norm_key(key: str) -> str:
    return re.sub(r"[^a-z]", "", str(key).lower())


def _pick(obj: Any, *keys: str) -> Any:
    """Case/format-insensitive dict lookup: ``JobTitle``, ``job_title`` and ``job title`` all match."""
    if not isinstance(obj, dict):
        return None
    lookup = {_norm_key(k): v for k, v in obj.items()}
    for key in keys:
        value = lookup.get(_norm_key(key))
        if value not in (None, "", [], {}):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        joined = ", ".join(str(v).strip() for v in value if v not in (None, ""))
        return joined or None
    if isinstance(value, dict):
        return None
    text = str(value).strip()
    return text or None


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list):
        return [str(v).strip() for v in value if v not in (None, "") and not isinstance(v, dict)]
    return [str(value)]


def _entries(value: Any) -> List[dict]:
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def normalize_llm_output(data: dict) -> dict:
    """
    Map the model's JSON onto ParsedCV field names.

    Models drift between snake_case, camelCase and the label style used in
    the prompt of older versions ("JobTitle", "DegreeType"), and sometimes
    call the experience section "qualifications".
    """
    pi = _pick(data, "personal_info", "personal_information", "personal") or {}
    result: Dict[str, Any] = {
        "personal_info": {
            "name": _as_text(_pick(pi, "name", "full_name")),
            "email": _as_text(_pick(pi, "email", "email_address")),
            "phone": _as_text(_pick(pi, "phone", "phone_number", "mobile", "contact_number")),
            "address": _as_text(_pick(pi, "address", "location")),
            "nic": _as_text(_pick(pi, "nic", "national_id", "id_number")),
            "linkedin": _as_text(_pick(pi, "linkedin", "linkedin_url")),
            "github": _as_text(_pick(pi, "github", "github_url")),
        }
    }

    result["education"] = [
        {
            "degree": _as_text(_pick(edu, "degree", "degree_type", "qualification")),
            "field_of_study": _as_text(_pick(edu, "field_of_study", "field", "major", "subject_stream")),
            "institution": _as_text(_pick(edu, "institution", "school", "university")),
            "period": _as_text(_pick(edu, "period", "dates", "duration", "year")),
            "details": _as_text(_pick(edu, "details", "description", "gpa")),
        }
        for edu in _entries(_pick(data, "education"))
    ]

    result["experience"] = [
        {
            "title": _as_text(_pick(exp, "title", "job_title", "role", "position")),
            "company": _as_text(_pick(exp, "company", "employer", "organization")),
            "period": _as_text(_pick(exp, "period", "dates", "duration")),
            "description": _as_text(_pick(exp, "description", "responsibilities", "description_of_responsibilities")),
        }
        for exp in _entries(_pick(data, "experience", "work_experience", "qualifications"))
    ]

    result["projects"] = [
        {
            "name": _as_text(_pick(proj, "name", "project_name", "title")),
            "technologies": _as_list(_pick(proj, "technologies", "technologies_used", "technology", "tech_stack")),
            "description": _as_text(_pick(proj, "description", "summary")),
            "link": _as_text(_pick(proj, "link", "url", "repo")),
        }
        for proj in _entries(_pick(data, "projects"))
    ]
    return result


def _strip_code_fences(response_text: str) -> str:
    response_text = response_text.strip()
    if response_text.startswith("```json"):
        response_text = response_text[7:]
    if response_text.startswith("```"):
        response_text = response_text[3:]
    if response_text.endswith("```"):
        response_text = response_text[:-3]
    return response_text.strip()


def parse_llm_response(response_text: Optional[str]) -> StructuringResult:
    """Parse raw model output. Non-conformant JSON yields an empty CV plus a soft-failure note."""
    cleaned = _strip_code_fences(response_text or "")
    try:
        parsed_data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"[CVParser] Model returned invalid JSON: {e}; raw response: {cleaned[:200]!r}")
        return StructuringResult(ParsedCV(), f"LLM response was not valid JSON ({e.msg})")

    if not isinstance(parsed_data, dict):
        logger.warning(f"[CVParser] Model returned {type(parsed_data).__name__} instead of an object")
        return StructuringResult(ParsedCV(), "LLM response was not a JSON object")

    try:
        return StructuringResult(ParsedCV(**normalize_llm_output(parsed_data)))
    except ValueError as e:
        logger.warning(f"[CVParser] Model output did not fit the CV schema: {e}")
        return StructuringResult(ParsedCV(), "LLM response did not match the CV schema")


# ============================================================================
# Gemini client
# ============================================================================

class GeminiCVStructurer:
    """Structures CV text with the Gemini API. The SDK client is created lazily."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash", client: Any = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key or self._client)

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise ExtractionServiceError("Gemini API not configured. Please set GEMINI_API_KEY.")
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def structure(self, text: str) -> StructuringResult:
        """
        Ask the model for the structured CV.

        Raises:
            ExtractionServiceError: the remote call itself failed
        """
        from google.genai import types

        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=[CV_PARSER_PROMPT, text[:MAX_CV_CHARS]],
                config=types.GenerateContentConfig(
                    temperature=0.2,
                    max_output_tokens=4096,
                    response_mime_type="application/json",
                ),
            )
        except Exception as e:
            logger.error(f"[CVParser] Gemini request failed: {e}")
            raise ExtractionServiceError(f"Failed to analyze CV with Gemini: {e}") from e

        return parse_llm_response(response.text)


# ============================================================================
# Heuristic fallback
# ============================================================================

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"(?<![\w+(])\+?\(?\d[\d\s().-]{8,}\d(?!\w)")
LINKEDIN_RE = re.compile(r"(?:https?://)?(?:[a-z]{2,3}\.)?linkedin\.com/[^\s,;|)]+", re.IGNORECASE)
GITHUB_RE = re.compile(r"(?:https?://)?(?:www\.)?github\.com/[^\s,;|)]+", re.IGNORECASE)
NIC_RE = re.compile(r"\b\d{9}[vVxX]\b")
NIC_NEW_RE = re.compile(r"\bnic\b.*?\b(\d{12})\b", re.IGNORECASE)

BLANK_VALUES = {"", "-", "n/a", "na", "none", "null", "not provided", "unknown"}
SECTION_HEADERS = {
    "curriculum vitae", "resume", "cv", "education", "experience", "professional experience",
    "projects", "skills", "references", "contact", "profile", "summary",
}


def is_blank(value: Optional[str]) -> bool:
    return value is None or str(value).strip().lower() in BLANK_VALUES


def _find_phone(line: str) -> Optional[str]:
    for match in PHONE_RE.finditer(line):
        digits = re.sub(r"\D", "", match.group())
        if 10 <= len(digits) <= 15:
            return match.group().strip()
    return None


def _looks_like_name(line: str) -> bool:
    if not 3 <= len(line) <= 60 or line.lower().strip(": ") in SECTION_HEADERS:
        return False
    if any(ch.isdigit() for ch in line) or "@" in line or "/" in line or ":" in line:
        return False
    words = line.split()
    return 2 <= len(words) <= 5 and all(w[0].isalpha() for w in words)


def extract_personal_info(text: str) -> Dict[str, str]:
    """Scan CV lines for contact details. Only the first hit per field is kept."""
    found: Dict[str, str] = {}
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    for line in lines:
        if "email" not in found:
            m = EMAIL_RE.search(line)
            if m:
                found["email"] = m.group()
        if "linkedin" not in found:
            m = LINKEDIN_RE.search(line)
            if m:
                found["linkedin"] = m.group()
        if "github" not in found:
            m = GITHUB_RE.search(line)
            if m:
                found["github"] = m.group()
        if "nic" not in found:
            m = NIC_RE.search(line) or NIC_NEW_RE.search(line)
            if m:
                found["nic"] = m.group(m.lastindex or 0)
        if "phone" not in found:
            phone = _find_phone(line)
            if phone and re.sub(r"\D", "", phone) != re.sub(r"\D", "", found.get("nic", "")):
                found["phone"] = phone
        if "name" not in found and _looks_like_name(line):
            found["name"] = line

    return found


def apply_heuristics(cv: ParsedCV, text: str) -> ParsedCV:
    """Fill blank personal-info fields from regex matches; present values are never overridden."""
    found = extract_personal_info(text)
    current = cv.personal_info.model_dump()
    filled = {
        key: found[key]
        for key, value in current.items()
        if is_blank(value) and key in found
    }
    if not filled:
        return cv
    logger.info(f"[CVParser] Heuristics filled: {', '.join(sorted(filled))}")
    personal_info = cv.personal_info.model_copy(update=filled)
    return cv.model_copy(update={"personal_info": personal_info})
