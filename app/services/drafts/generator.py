"""
DraftGenerator: черновики документов и карточек через OpenAI-совместимый completion API.

По умолчанию endpoint OpenRouter (openai_base_url), модель из draft_model.
Ошибки API и пустой ответ -> DraftGenerationError; платёжное состояние не затрагивается.
"""
import logging
import time

import pybreaker
from openai import OpenAI, OpenAIError

from app.core.config import settings
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import draft_request_duration_seconds, draft_requests_total

logger = logging.getLogger("llm.drafts")

# ---------------------------------------------------------------------------
# Промпты
# ---------------------------------------------------------------------------
DOCUMENT_SYSTEM_PROMPT = (
    "You are a legal document specialist who creates professional, legally sound document templates. "
    "Always include appropriate disclaimers and encourage users to have documents reviewed by qualified attorneys."
)
DOCUMENT_USER_PROMPT = """Generate a {template_name} document using the following information:

{fields}

Requirements:
- Use proper legal document formatting
- Include all necessary legal language
- Make it professional but understandable
- Include placeholders for signatures and dates where appropriate
- Add a disclaimer that this is a template and legal advice should be sought

Format as a complete, ready-to-use document."""

CONTENT_SYSTEM_PROMPT = (
    "You are a legal expert who specializes in explaining complex legal concepts in simple, actionable terms "
    "for everyday people. Always provide accurate, helpful information while encouraging users to seek "
    "professional legal advice for specific situations."
)
CONTENT_USER_PROMPT = """Generate {content_type} content for legal rights information about {topic} in the {category} category.

Requirements:
- Use simple, clear language that non-lawyers can understand
- Include specific actionable steps
- Highlight key rights and protections
- Format with bullet points and clear sections
- Keep it concise but comprehensive
- Include "what to do" and "what not to do" sections where relevant

Format the response in markdown for easy reading."""

CONTENT_TYPES = ("card", "guide", "template")


class DraftGenerationError(Exception):
    pass


class DraftGenerator:
    def __init__(self, client: OpenAI | None = None, model: str | None = None):
        self._client = client
        self.model = model or settings.draft_model

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not settings.openai_api_key:
                raise DraftGenerationError("Completion API key is not configured")
            self._client = OpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.openai_request_timeout,
            )
        return self._client

    def generate_document(self, template_name: str, inputs: dict[str, str]) -> str:
        fields = "\n".join(f"{key}: {value}" for key, value in inputs.items())
        return self._complete(
            kind="document",
            system=DOCUMENT_SYSTEM_PROMPT,
            user=DOCUMENT_USER_PROMPT.format(template_name=template_name, fields=fields),
            max_tokens=settings.draft_max_tokens,
            temperature=settings.draft_temperature,
        )

    def generate_content(self, category: str, topic: str, content_type: str = "card") -> str:
        if content_type not in CONTENT_TYPES:
            raise ValueError(f"content_type must be one of {', '.join(CONTENT_TYPES)}")
        return self._complete(
            kind="content",
            system=CONTENT_SYSTEM_PROMPT,
            user=CONTENT_USER_PROMPT.format(content_type=content_type, topic=topic, category=category),
            max_tokens=settings.content_max_tokens,
            temperature=settings.content_temperature,
        )

    def _complete(self, kind: str, system: str, user: str, max_tokens: int, temperature: float) -> str:
        client = self.client
        start = time.time()
        try:
            response = get_circuit_breaker("llm").call(
                client.chat.completions.create,
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except pybreaker.CircuitBreakerError as e:
            draft_requests_total.labels(kind=kind, status="breaker_open").inc()
            raise DraftGenerationError("Draft service temporarily unavailable") from e
        except OpenAIError as e:
            draft_requests_total.labels(kind=kind, status="error").inc()
            logger.warning("draft_api_error", extra={"error": str(e)})
            raise DraftGenerationError(f"Failed to generate legal {kind}") from e
        finally:
            draft_request_duration_seconds.observe(time.time() - start)

        text = ""
        if response.choices:
            text = (response.choices[0].message.content or "").strip()
        if not text:
            draft_requests_total.labels(kind=kind, status="empty").inc()
            raise DraftGenerationError(f"Empty {kind} draft returned")
        draft_requests_total.labels(kind=kind, status="success").inc()
        return text
