"""
Unit tests for AI response normalisation and the LLM client wrapper.
"""
from unittest.mock import MagicMock

import pytest

from models.forms import ItemInput, ParsedInvoiceData, ParsedItem
from invoicing.llm_parser import LLMParser, extract_json, map_to_form, parse_invoice_data


def _chat_response(content: str) -> MagicMock:
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


@pytest.mark.unit
class TestExtractJson:
    """Tests for extract_json()."""

    def test_clean_json(self):
        assert extract_json('{"a":1}') == {"a": 1}

    def test_markdown_code_block(self):
        assert extract_json('```json\n{"a":1}\n```') == {"a": 1}

    def test_plain_code_block(self):
        assert extract_json('```\n{"a":1}\n```') == {"a": 1}

    def test_uppercase_language_tag(self):
        assert extract_json('```JSON\n{"a":1}\n```') == {"a": 1}

    def test_prefix_text(self):
        assert extract_json('Here is the result: {"clientName": "Apple"}') == {"clientName": "Apple"}

    def test_suffix_text(self):
        assert extract_json('{"clientName": "Apple"} Hope this helps!') == {"clientName": "Apple"}

    def test_nested_json(self):
        raw = '{"clientName": "Apple", "items": [{"name": "logo", "quantity": 2, "price": 500}]}'
        assert extract_json(raw) == {
            "clientName": "Apple",
            "items": [{"name": "logo", "quantity": 2, "price": 500}],
        }

    def test_multiline_json(self):
        raw = '{\n  "clientName": "Apple",\n  "taxRate": 0.2\n}'
        assert extract_json(raw) == {"clientName": "Apple", "taxRate": 0.2}

    def test_unicode(self):
        assert extract_json('{"clientName": "Café Müller 東京"}') == {"clientName": "Café Müller 東京"}

    def test_not_json(self):
        assert extract_json("not json") is None

    def test_empty_input(self):
        assert extract_json("") is None

    def test_malformed_json(self):
        assert extract_json('{"a": 1,}') is None

    def test_two_objects_give_invalid_span(self):
        """The greedy span covers both objects and the text between them."""
        assert extract_json('{"a": 1} and {"b": 2}') is None

    def test_closing_brace_before_opening(self):
        assert extract_json("} nothing here {") is None

    def test_no_schema_validation(self):
        assert extract_json('{"unrelated": true}') == {"unrelated": True}

    def test_never_raises_on_pathological_input(self):
        assert extract_json("{" * 100000 + "}" * 100000) is None


@pytest.mark.unit
class TestParseInvoiceData:
    """Tests for parse_invoice_data()."""

    def test_full_payload(self):
        parsed = parse_invoice_data({
            "clientName": "Apple",
            "invoiceNumber": "INV-042",
            "date": "2024-03-01",
            "dueDate": "2024-03-31",
            "items": [{"name": "logo design", "quantity": 2, "price": 500}],
            "taxRate": 0.2,
            "discount": 0.1,
            "notes": "Net 30",
        })
        assert parsed.client_name == "Apple"
        assert parsed.due_date == "2024-03-31"
        assert parsed.items == [ParsedItem(name="logo design", quantity=2, price=500)]
        assert parsed.tax_rate == 0.2
        assert parsed.discount == 0.1

    def test_invalid_field_dropped_rest_kept(self):
        parsed = parse_invoice_data({"clientName": "Apple", "taxRate": "twenty percent"})
        assert parsed.client_name == "Apple"
        assert parsed.tax_rate is None

    def test_invalid_items_dropped(self):
        """Only the broken line items are dropped; valid ones survive."""
        parsed = parse_invoice_data({
            "clientName": "Apple",
            "items": [
                {"name": "logo design", "quantity": 2, "price": 500},
                {"name": "no price", "quantity": 1},
                {"quantity": 1, "price": 10},
                {"name": "hosting", "quantity": 1, "price": 50},
            ],
        })
        assert parsed.client_name == "Apple"
        assert parsed.items == [
            ParsedItem(name="logo design", quantity=2, price=500),
            ParsedItem(name="hosting", quantity=1, price=50),
        ]

    def test_all_items_invalid_gives_empty_list(self):
        parsed = parse_invoice_data({"clientName": "Apple", "items": [{"quantity": 1}]})
        assert parsed.client_name == "Apple"
        assert parsed.items == []

    def test_items_not_a_list_dropped(self):
        parsed = parse_invoice_data({"clientName": "Apple", "items": "two logos"})
        assert parsed.client_name == "Apple"
        assert parsed.items is None

    def test_snake_case_keys_with_invalid_field(self):
        """A bad field is dropped whichever spelling the payload uses."""
        parsed = parse_invoice_data({
            "client_name": "Apple",
            "tax_rate": "twenty percent",
            "due_date": "2024-03-31",
        })
        assert parsed is not None
        assert parsed.client_name == "Apple"
        assert parsed.due_date == "2024-03-31"
        assert parsed.tax_rate is None

    def test_unknown_keys_ignored(self):
        parsed = parse_invoice_data({"clientName": "Apple", "currency": "EUR"})
        assert parsed.model_dump() == ParsedInvoiceData(client_name="Apple").model_dump()


@pytest.mark.unit
class TestMapToForm:
    """Tests for map_to_form()."""

    def test_maps_items_and_passes_fields_through(self):
        parsed = ParsedInvoiceData(
            client_name="Apple",
            invoice_number="INV-042",
            date="2024-03-01",
            due_date="2024-03-31",
            items=[ParsedItem(name="logo design", quantity=2, price=500)],
            tax_rate=0.2,
            discount=0.1,
            notes="Net 30",
        )
        form = map_to_form(parsed)

        assert form.client_name == "Apple"
        assert form.items == [ItemInput(description="logo design", quantity=2, price=500)]
        assert form.invoice_number == "INV-042"
        assert form.date == "2024-03-01"
        assert form.due_date == "2024-03-31"
        assert form.tax_rate == 0.2
        assert form.discount == 0.1
        assert form.notes == "Net 30"

    def test_empty_data(self):
        form = map_to_form(ParsedInvoiceData())
        assert form.client_name == ""
        assert form.items == []
        assert form.invoice_number is None
        assert form.date is None
        assert form.due_date is None
        assert form.tax_rate is None
        assert form.discount is None
        assert form.notes is None

    def test_preserves_item_order(self):
        parsed = ParsedInvoiceData(items=[
            ParsedItem(name="first", quantity=1, price=1),
            ParsedItem(name="second", quantity=1, price=2),
        ])
        assert [i.description for i in map_to_form(parsed).items] == ["first", "second"]

    def test_to_input_fills_only_blanks(self):
        form = map_to_form(ParsedInvoiceData(client_name="Apple", tax_rate=0.2))
        invoice_input = form.to_input(invoice_number="INV-007", date="2024-05-01")
        assert invoice_input.invoice_number == "INV-007"
        assert invoice_input.date == "2024-05-01"
        assert invoice_input.tax_rate == 0.2
        assert invoice_input.discount == 0.0


@pytest.mark.unit
class TestLLMParser:
    """Tests for LLMParser with a mocked OpenAI client."""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def parser(self, client):
        return LLMParser(model="test-model", client=client)

    def test_parse_chatty_response(self, parser, client, mock_llm_response):
        client.chat.completions.create.return_value = _chat_response(mock_llm_response)

        parsed = parser.parse("Apple, two logo designs at 500 each, 20% tax")

        assert parsed.client_name == "Apple"
        assert parsed.invoice_number == "INV-042"
        assert parsed.items[0].name == "logo design"
        assert parsed.tax_rate == 0.2

    def test_request_shape(self, parser, client, mock_llm_response):
        client.chat.completions.create.return_value = _chat_response(mock_llm_response)

        parser.parse("Apple, two logo designs")

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 500
        prompt = kwargs["messages"][0]["content"]
        assert 'Text: "Apple, two logo designs"' in prompt
        assert '"clientName": "Apple"' in prompt

    def test_unusable_response_returns_none(self, parser, client):
        client.chat.completions.create.return_value = _chat_response("Sorry, I cannot help.")
        assert parser.parse("something") is None

    def test_empty_response_returns_none(self, parser, client):
        client.chat.completions.create.return_value = _chat_response("")
        assert parser.parse("something") is None

    def test_blank_text_rejected(self, parser, client):
        with pytest.raises(ValueError):
            parser.parse("   ")
        client.chat.completions.create.assert_not_called()

    def test_transport_error_propagates(self, parser, client):
        client.chat.completions.create.side_effect = ConnectionError("offline")
        with pytest.raises(ConnectionError):
            parser.parse("something")

    def test_retries_until_success(self, client, mock_llm_response):
        parser = LLMParser(client=client, max_attempts=2)
        client.chat.completions.create.side_effect = [
            ConnectionError("offline"),
            _chat_response(mock_llm_response),
        ]
        assert parser.parse("something").client_name == "Apple"
        assert client.chat.completions.create.call_count == 2

    def test_fill_form(self, parser, client, mock_llm_response):
        client.chat.completions.create.return_value = _chat_response(mock_llm_response)

        form = parser.fill_form("Apple, two logo designs")

        assert form.client_name == "Apple"
        assert form.items == [ItemInput(description="logo design", quantity=2, price=500)]

    def test_fill_form_none_on_failure(self, parser, client):
        client.chat.completions.create.return_value = _chat_response("no data")
        assert parser.fill_form("something") is None

    def test_check_connection_ok(self, parser, client):
        client.models.list.return_value = MagicMock(data=[MagicMock(id="test-model:latest")])
        status = parser.check_connection()
        assert status["ok"] is True
        assert status["model_available"] is True

    def test_check_connection_failure(self, parser, client):
        client.models.list.side_effect = ConnectionError("refused")
        status = parser.check_connection()
        assert status["ok"] is False
        assert "refused" in status["error"]
