"""
Tests for the intentflow command-line interface.
"""

import json
import textwrap

import pytest

from intentflow.cli import main


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    # Keep the CLI from replacing pytest's log handlers
    monkeypatch.setattr("intentflow.observability.configure_logging", lambda **kwargs: None)


@pytest.fixture
def graph_file(tmp_path):
    def write(data):
        path = tmp_path / "graph.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return str(path)

    return write


@pytest.fixture
def handlers_module(tmp_path, monkeypatch):
    module = tmp_path / "cli_handlers.py"
    module.write_text(
        textwrap.dedent(
            """
            from intentflow.runner.handler_registry import OperationHandlerRegistry

            registry = OperationHandlerRegistry()
            registry.register("portfolio_view", lambda params: {"usdc": 100})

            @registry.handler("token_trade")
            def trade(params):
                raise ValueError("amount must be positive")
            """
        ),
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    return "cli_handlers:registry"


def test_validate_ok(graph_file, capsys):
    path = graph_file(
        {
            "nodes": [
                {"id": "alert", "type": "price_alert", "depends_on": ["quote"]},
                {"id": "quote", "type": "portfolio_view"},
            ]
        }
    )

    assert main(["validate", path]) == 0
    assert json.loads(capsys.readouterr().out) == {"valid": True, "order": ["quote", "alert"]}


def test_validate_cycle(graph_file, capsys):
    path = graph_file(
        {
            "nodes": [
                {"id": "a", "type": "price_alert", "depends_on": ["b"]},
                {"id": "b", "type": "price_alert", "depends_on": ["a"]},
            ]
        }
    )

    assert main(["validate", path]) == 1
    output = json.loads(capsys.readouterr().out)
    assert output["valid"] is False
    assert output["error"]["kind"] == "CycleDetected"


def test_validate_missing_file(tmp_path, capsys):
    assert main(["validate", str(tmp_path / "missing.json")]) == 1
    assert "Error reading graph" in capsys.readouterr().err


def test_templates_list(capsys):
    assert main(["templates"]) == 0
    names = [t["name"] for t in json.loads(capsys.readouterr().out)]
    assert "research_scan_trade" in names


def test_templates_build(capsys):
    params = json.dumps({"token": "SOL", "target_price": 200})
    assert main(["templates", "--name", "portfolio_review_alert", "--params", params]) == 0
    graph = json.loads(capsys.readouterr().out)
    assert [n["id"] for n in graph["nodes"]] == ["portfolio", "alert"]


def test_templates_missing_params(capsys):
    assert main(["templates", "--name", "research_scan_trade"]) == 1
    assert "requires parameters" in capsys.readouterr().err


def test_run_completed(graph_file, handlers_module, capsys):
    path = graph_file({"nodes": [{"id": "p", "type": "portfolio_view"}]})

    assert main(["run", path, "--handlers", handlers_module]) == 0
    output = json.loads(capsys.readouterr().out)
    assert output["overall_status"] == "completed"
    assert output["nodes"][0]["result"] == {"usdc": 100}


def test_run_partial_failure(graph_file, handlers_module, capsys):
    path = graph_file(
        {"nodes": [{"id": "p", "type": "portfolio_view"}, {"id": "t", "type": "token_trade"}]}
    )

    assert main(["run", path, "--handlers", handlers_module, "--deadline", "5"]) == 2
    output = json.loads(capsys.readouterr().out)
    assert output["nodes"][1]["error"]["kind"] == "validation"


def test_run_bad_handlers_target(graph_file, capsys):
    path = graph_file({"nodes": []})
    assert main(["run", path, "--handlers", "no_such_module_xyz:registry"]) == 1


def test_validate_malformed_node(graph_file, capsys):
    path = graph_file({"nodes": [{"id": "a"}]})

    assert main(["validate", path]) == 1
    output = json.loads(capsys.readouterr().out)
    assert output["error"]["kind"] == "InvalidGraph"
