"""
Tests for {{ }} parameter templates.
"""

import pytest

from intentflow.errors import UnresolvedReferenceError
from intentflow.graph.templating import ParameterTemplate
from intentflow.runtime.result_store import ResultStore


@pytest.fixture
def store():
    results = ResultStore()
    results.put("quote", {"price": 2.5, "symbol": "SOL"})
    results.put("scan", {"tokens": [{"symbol": "BONK", "address": "DezX"}]})
    return results


def test_exact_template_keeps_type(store):
    template = ParameterTemplate.compile({"amount": "{{ quote.price * 4 }}"})
    assert template.render(store.lookup) == {"amount": 10.0}


def test_interpolated_template_is_text(store):
    template = ParameterTemplate.compile({"note": "Bought {{ quote.symbol }} at {{ quote.price }}"})
    assert template.render(store.lookup) == {"note": "Bought SOL at 2.5"}


def test_nested_values(store):
    template = ParameterTemplate.compile(
        {
            "order": {"token": "{{ scan.tokens[0].address }}", "targets": [1.5, "{{ quote.price }}"]},
            "fixed": 3,
        }
    )
    assert template.references() == frozenset({"quote", "scan"})
    assert template.render(store.lookup) == {
        "order": {"token": "DezX", "targets": [1.5, 2.5]},
        "fixed": 3,
    }


def test_plain_parameters_have_no_references():
    template = ParameterTemplate.compile({"token": "SOL", "amount": 1})
    assert template.references() == frozenset()


def test_missing_path_raises(store):
    template = ParameterTemplate.compile({"x": "{{ quote.missing }}"})
    with pytest.raises(UnresolvedReferenceError):
        template.render(store.lookup)
