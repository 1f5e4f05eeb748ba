from datetime import datetime
from decimal import Decimal

import pytest

from docfill.errors import FormattingError, ProcessingError
from docfill.services.context import build_context
from docfill.services.formatting import eq, format_currency, format_date, parse_amount, parse_date
from docfill.services.locales import get_locale
from docfill.services.records import records_from_pairs
from docfill.services.renderer import TemplateRenderer

ES = get_locale("es-ES")
US = get_locale("en-US")


def show(renderer, source, *pairs, **kwargs):
    return renderer.render(source, build_context(records_from_pairs(pairs)), **kwargs)


@pytest.mark.parametrize("text, locale, expected", [
    ("1.234,56", ES, Decimal("1234.56")),
    ("1,234.56", ES, Decimal("1234.56")),
    ("1.234", ES, Decimal("1234")),
    ("1.234", US, Decimal("1.234")),
    ("12,5", ES, Decimal("12.5")),
    ("1.234.567", ES, Decimal("1234567")),
    ("-5", US, Decimal("-5")),
    ("€ 980,00", ES, Decimal("980.00")),
])
def test_parse_amount_text(text, locale, expected):
    assert parse_amount(text, locale)[0] == expected


def test_parse_amount_codes_and_objects():
    assert parse_amount("USD 1,234.50", US) == (Decimal("1234.50"), "USD")
    assert parse_amount({"amount": "10", "currency": "gbp"}, US) == (Decimal("10"), "GBP")
    assert parse_amount({"EUR": "3,5"}, ES) == (Decimal("3.5"), "EUR")
    assert parse_amount("invalid", ES) == (None, None)
    assert parse_amount(True, ES) == (None, None)


def test_format_currency_placements():
    assert format_currency(Decimal("1234.56"), "EUR", ES) == "1.234,56 €"
    assert format_currency(Decimal("1234.56"), "USD", ES) == "$1,234.56"
    assert format_currency(Decimal("-5"), "USD", ES) == "-$5.00"
    assert format_currency(Decimal("1234.56"), "GBP", ES) == "£1,234.56"
    assert format_currency(Decimal("1234.56"), "CHF", ES) == "1.234,56 CHF"
    assert format_currency(Decimal("0.005"), "EUR", ES) == "0,01 €"
    with pytest.raises(FormattingError):
        format_currency(Decimal("1"), "EURO", ES)


def test_currency_filter_on_european_input(renderer):
    result = show(renderer, "{{ price|currency }}", ("price", "1.234,56"))
    assert result.markup == '<span class="imported-value" data-field="price">1.234,56 €</span>'


def test_invalid_amount_is_a_format_error_not_a_missing_field(renderer):
    result = show(renderer, "{{ price|currency }}", ("price", "invalid"))
    assert result.markup == ('<span class="missing-value format-error" data-field="price" '
                             'data-error="currency">[[Invalid amount]]</span>')
    assert result.stats.missing_fields == 1


def test_invalid_currency_code(renderer):
    result = show(renderer, "{{ price|currency('EURO') }}", ("price", "1"))
    assert "[[Invalid currency]]" in result.markup


def test_amount_objects_carry_their_currency(renderer):
    result = show(renderer, "{{ fee|currency }}", ("fee.amount", "10"), ("fee.currency", "USD"))
    assert ">$10.00<" in result.markup
    assert str(result.stats.markers[0].path) == "fee"


def test_number_styles(renderer):
    result = show(renderer, "{{ a|number }} {{ b|number(style='percent') }} {{ c|number(max_decimals=0) }}",
                  ("a", "1234.5678"), ("b", "0,125"), ("c", "2,5"))
    displays = [m.display for m in result.stats.markers]
    assert displays == ["1.234,568", "12,5%", "3"]


def test_invalid_number(renderer):
    result = show(renderer, "{{ n|number }}", ("n", "abc"))
    assert "[[Invalid number]]" in result.markup
    assert 'data-error="decimal"' in result.markup


def test_dates_follow_the_locale(renderer):
    result = show(renderer, "{{ d|date }}|{{ d|date('FULL') }}|{{ d|date('ISO') }}|{{ d|add_years(2) }}",
                  ("d", "2024-03-01"))
    assert [m.display for m in result.stats.markers] == [
        "01/03/2024", "1 de marzo de 2024", "2024-03-01", "1 de marzo de 2026",
    ]
    english = show(renderer, "{{ d|date('FULL') }} {{ d|date('%d %B') }}", ("d", "2024-03-01"), locale="en-US")
    assert [m.display for m in english.stats.markers] == ["March 1, 2024", "01 March"]


def test_day_first_parsing_depends_on_locale():
    assert parse_date("02/03/2024", ES).month == 3
    assert parse_date("02/03/2024", US).month == 2
    assert parse_date("nope", ES) is None
    assert format_date(datetime(2024, 12, 5), "FULL", US) == "December 5, 2024"


def test_invalid_date(renderer):
    result = show(renderer, "{{ d|date }}", ("d", "someday"))
    assert "[[Invalid date]]" in result.markup


def test_raw_output_is_not_counted(renderer):
    result = show(renderer, "{{ p|currency(raw=true) }}", ("p", "5"))
    assert result.markup == "5,00 €"
    assert result.stats.total_fields == 0


def test_empty_value_policy_per_helper(renderer):
    result = show(renderer, "{{ t }}|{{ t|text }}|{{ t|currency }}", ("t", ""))
    kinds = [(m.kind, m.display) for m in result.stats.markers]
    assert kinds == [("imported", ""), ("imported", ""), ("missing", "[[t]]")]


def test_chained_helpers_count_the_field_once(renderer):
    result = show(renderer, "{{ p|currency|text(upper=true) }}", ("p", "7"))
    assert result.stats.to_dict() == {"total_fields": 1, "resolved_fields": 1, "missing_fields": 0}
    assert ">7,00 €<" in result.markup


def test_format_errors_survive_later_helpers(renderer):
    source = "{{ price|currency|text }} {{ price|currency|upper }} {{ price|currency|default('0') }}"
    result = show(renderer, source, ("price", "invalid"))
    assert result.markup.count('data-error="currency">[[Invalid amount]]</span>') == 3
    assert "[[price]]" not in result.markup
    assert result.stats.to_dict() == {"total_fields": 3, "resolved_fields": 0, "missing_fields": 3}


def test_format_error_as_raw_text_is_not_counted(renderer):
    result = show(renderer, "{{ price|currency|text(raw=true) }}", ("price", "invalid"))
    assert result.markup == "[[Invalid amount]]"
    assert result.stats.total_fields == 0


def test_text_transforms(renderer):
    result = show(renderer, "{{ n|text(capitalize=true) }} {{ n|text(upper=true) }}", ("n", "ana"))
    assert [m.display for m in result.stats.markers] == ["Ana", "ANA"]


def test_email(renderer):
    result = show(renderer, "{{ e|email }} {{ bad|email }}", ("e", "it@acme.example"), ("bad", "nope"))
    assert '<a href="mailto:it@acme.example">it@acme.example</a>' in result.markup
    assert 'data-error="email">[[Invalid email]]' in result.markup


def test_missing_input_to_a_helper_is_a_missing_marker(renderer):
    result = show(renderer, "{{ price|currency }}", ("other", "x"))
    assert result.markup == '<span class="missing-value" data-field="price">[[price]]</span>'


def test_loose_equality():
    assert eq("TRUE", True)
    assert eq("1.0", 1)
    assert eq("Ana", "ana")
    assert not eq(None, "")
    assert not eq("a", "b")


def test_eq_in_templates(renderer):
    result = show(renderer, "{% if eq(status, 'Signed') %}yes{% endif %}", ("status", "signed"))
    assert result.markup == "yes"


def test_unknown_timezone_is_rejected():
    with pytest.raises(ProcessingError):
        TemplateRenderer(timezone="Mars/Olympus")
