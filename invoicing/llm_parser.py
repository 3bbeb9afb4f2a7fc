"""
Free-text invoice pre-fill using an OpenAI-compatible chat model.

The model is asked for a JSON object but routinely wraps it in prose or code
fences. extract_json() digs the object out, parse_invoice_data() keeps what
validates, and map_to_form() turns the result into a creation form. Nothing
here writes an invoice: the form still goes through validation and
InvoiceRepository.create().

Works with any OpenAI-compatible backend:
  - Ollama (local):  LLM_BASE_URL=http://localhost:11434/v1   LLM_API_KEY=ollama
  - OpenAI:          LLM_BASE_URL=https://api.openai.com/v1   LLM_API_KEY=sk-...
  - Groq:            LLM_BASE_URL=https://api.groq.com/openai/v1  LLM_API_KEY=gsk_...
"""
import json
import logging
import re
from typing import Optional

from pydantic import ValidationError

from models.forms import InvoiceFormData, ItemInput, ParsedInvoiceData

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[\w-]*")
# Greedy: first "{" to last "}". Two separate objects therefore produce an
# invalid span and the whole reply is rejected.
_OBJECT_SPAN_RE = re.compile(r"\{.*\}", re.DOTALL)


# ---------------------------------------------------------------------------
# Prompt template
# ---------------------------------------------------------------------------

_PROMPT = """Extract invoice data from the text below. Extract ALL information you can find.
Return ONLY a JSON object. Include only fields that are mentioned in the text.
Possible fields (all optional):
- clientName: client/company name
- invoiceNumber: invoice number
- date: date in YYYY-MM-DD format
- dueDate: due date in YYYY-MM-DD format
- items: array of items with "name", "quantity" (number), "price" (number)
- taxRate: tax rate as decimal (0.20 for 20%)
- discount: discount as decimal (0.10 for 10%)
- notes: additional notes

Example: {{"clientName": "Apple", "items": [{{"name": "logo design", "quantity": 2, "price": 500}}]}}

Text: "{text}\""""


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def extract_json(raw_text: str) -> Optional[dict]:
    """
    Pull a JSON object out of a model reply.

    Returns None when no object can be found or the candidate span does not
    parse. Never raises. The object is not checked against any schema.
    """
    if not raw_text:
        return None

    cleaned = _FENCE_RE.sub("", raw_text).strip()

    match = _OBJECT_SPAN_RE.search(cleaned)
    if match:
        candidate = match.group(0)
    else:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end == -1 or start >= end:
            logger.warning("No JSON object found in LLM response")
            return None
        candidate = cleaned[start:end + 1]

    try:
        data = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError) as e:
        logger.warning("JSON decode error: %s", e)
        return None

    if not isinstance(data, dict):
        logger.warning("LLM response JSON is a %s, not an object", type(data).__name__)
        return None
    return data


def _field_keys(key: str) -> set[str]:
    """Both spellings (field name and camelCase alias) of a payload key."""
    for name, info in ParsedInvoiceData.model_fields.items():
        alias = info.alias or name
        if key in (name, alias):
            return {name, alias}
    return {key}


def parse_invoice_data(payload: dict) -> Optional[ParsedInvoiceData]:
    """
    Validate an extracted object as ParsedInvoiceData.

    Top-level fields that fail validation are dropped and the rest kept. A bad
    line item drops only that item. Unknown keys are ignored.
    """
    try:
        return ParsedInvoiceData.model_validate(payload)
    except ValidationError as e:
        logger.warning("Pydantic validation failed: %s", e)
        bad_fields: set[str] = set()
        bad_items: set[int] = set()
        for err in e.errors():
            loc = err["loc"]
            if not loc:
                continue
            keys = _field_keys(str(loc[0]))
            if "items" in keys and len(loc) > 1 and isinstance(loc[1], int):
                bad_items.add(loc[1])
            else:
                bad_fields |= keys

        valid_data = {k: v for k, v in payload.items() if k not in bad_fields}
        if bad_items and isinstance(valid_data.get("items"), list):
            valid_data["items"] = [
                item for i, item in enumerate(valid_data["items"]) if i not in bad_items
            ]
        try:
            return ParsedInvoiceData.model_validate(valid_data)
        except ValidationError:
            return None


def map_to_form(parsed: ParsedInvoiceData) -> InvoiceFormData:
    """
    Map AI output onto the creation form.

    Item "name" becomes "description". No invoice number, date or totals are
    invented here.
    """
    return InvoiceFormData(
        client_name=parsed.client_name or "",
        invoice_number=parsed.invoice_number,
        date=parsed.date,
        due_date=parsed.due_date,
        items=[
            ItemInput(description=item.name, quantity=item.quantity, price=item.price)
            for item in parsed.items or []
        ],
        tax_rate=parsed.tax_rate,
        discount=parsed.discount,
        notes=parsed.notes,
    )


# ---------------------------------------------------------------------------
# LLMParser
# ---------------------------------------------------------------------------

class LLMParser:
    """
    Turns a free-text invoice description into ParsedInvoiceData.

    Defaults to Ollama's OpenAI-compatible endpoint; point LLM_BASE_URL,
    LLM_MODEL and LLM_API_KEY elsewhere to switch backends.
    """

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = "http://localhost:11434/v1",
        api_key: str = "ollama",
        temperature: float = 0.1,
        max_tokens: int = 500,
        max_attempts: int = 1,
        client=None,
    ):
        self.model        = model
        self.base_url     = base_url
        self.api_key      = api_key
        self.temperature  = temperature
        self.max_tokens   = max_tokens
        self.max_attempts = max(1, max_attempts)
        self._client      = client

    @classmethod
    def from_config(cls, config) -> "LLMParser":
        return cls(
            model=config.llm_model,
            base_url=config.llm_base_url,
            api_key=config.llm_api_key,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
            max_attempts=config.llm_max_attempts,
        )

    def _get_client(self):
        """Lazily initialise the OpenAI client."""
        if self._client is None:
            try:
                from openai import OpenAI
                self._client = OpenAI(
                    base_url=self.base_url,
                    api_key=self.api_key,
                )
            except ImportError:
                raise RuntimeError(
                    "openai package not installed. Run: pip install openai"
                )
        return self._client

    def build_prompt(self, text: str) -> str:
        return _PROMPT.format(text=text.strip())

    def complete(self, text: str) -> str:
        """Send the extraction prompt and return the raw reply text."""
        client = self._get_client()
        response = client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": self.build_prompt(text)}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return (response.choices[0].message.content or "").strip()

    def parse(self, text: str) -> Optional[ParsedInvoiceData]:
        """
        Ask the model to read text and return whatever invoice data it found.

        Returns None when the reply holds no usable JSON object; the caller
        should ask the user to rephrase. Raises ValueError for blank input and
        lets transport errors from the final attempt propagate.
        """
        if not text or not text.strip():
            raise ValueError("Enter an invoice description for AI fill")

        for attempt in range(1, self.max_attempts + 1):
            logger.debug("LLM extraction attempt %d (model=%s)", attempt, self.model)
            try:
                raw = self.complete(text)
            except Exception as e:
                logger.warning("LLM attempt %d failed: %s", attempt, e)
                if attempt == self.max_attempts:
                    raise
                continue

            if not raw:
                logger.warning("Model returned an empty response")
                continue

            logger.debug("Raw AI response: %s", raw)
            payload = extract_json(raw)
            if payload is None:
                continue

            parsed = parse_invoice_data(payload)
            if parsed is not None:
                logger.info("LLM extraction succeeded on attempt %d", attempt)
                return parsed

        logger.warning("LLM did not return usable invoice JSON after %d attempt(s)", self.max_attempts)
        return None

    def fill_form(self, text: str) -> Optional[InvoiceFormData]:
        """parse() followed by map_to_form(); None when parsing failed."""
        parsed = self.parse(text)
        return map_to_form(parsed) if parsed is not None else None

    def check_connection(self) -> dict:
        """
        Verify the LLM endpoint is reachable and the configured model is available.
        """
        try:
            client = self._get_client()
            models_response = client.models.list()
            available = [m.id for m in models_response.data]
            model_available = any(self.model in m for m in available)
            return {
                "ok": True,
                "base_url": self.base_url,
                "model_available": model_available,
                "available_models": available,
            }
        except Exception as e:
            return {
                "ok": False,
                "base_url": self.base_url,
                "error": str(e),
                "model_available": False,
            }
