"""Tests for the extraction CLI stage."""

import json

import pytest

from schemaguard.stages import run_extraction


class FakeInvoker:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def __call__(self, request, timeout):
        self.requests.append(request)
        return self.response


@pytest.fixture
def cli(monkeypatch, tmp_path):
    """Point logs at tmp_path and swap the OpenRouter invoker for a fake."""
    monkeypatch.setattr(run_extraction, "DIR_LOGS", tmp_path / "logs")
    invokers = []

    def _install(response):
        def _factory(model):
            invoker = FakeInvoker(response)
            invokers.append(invoker)
            return invoker

        monkeypatch.setattr(run_extraction, "OpenRouterInvoker", _factory)
        return invokers

    return _install


class TestRunExtraction:
    def test_success_prints_json(self, cli, capsys, tmp_path) -> None:
        invokers = cli('{"label": "bug", "confidence": 0.8}')
        output = tmp_path / "out" / "result.json"

        status = run_extraction.main([
            "--schema", "classification",
            "--instructions", "The app crashes on save.",
            "-o", str(output),
        ])

        assert status == 0
        printed = json.loads(capsys.readouterr().out)
        assert printed["label"] == "bug"
        assert json.loads(output.read_text(encoding="utf-8"))["label"] == "bug"
        assert invokers[0].requests[0].user_prompt == "The app crashes on save."

    def test_input_file_appended(self, cli, tmp_path) -> None:
        invokers = cli('{"label": "question", "confidence": 0.6}')
        source = tmp_path / "ticket.txt"
        source.write_text("How do I export my data?", encoding="utf-8")

        run_extraction.main(["--schema", "classification", "--input", str(source)])
        prompt = invokers[0].requests[0].user_prompt
        assert prompt.startswith("Extract the data.")
        assert prompt.endswith("How do I export my data?")

    def test_failure_exit_status(self, cli, capsys) -> None:
        cli('{"label": "spam", "confidence": 0.8}')
        status = run_extraction.main(["--schema", "classification", "--max-retries", "0"])

        assert status == 1
        err = capsys.readouterr().err
        assert "validation_exhausted" in err
        assert "label [enum_mismatch]" in err

    def test_schema_file(self, cli, tmp_path, capsys) -> None:
        cli('{"city": "Lisbon"}')
        schema_file = tmp_path / "place.yaml"
        schema_file.write_text("name: Place\nfields:\n  - {name: city}\n", encoding="utf-8")

        status = run_extraction.main(["--schema-file", str(schema_file)])
        assert status == 0
        assert json.loads(capsys.readouterr().out) == {"city": "Lisbon"}

    def test_bad_schema_file(self, cli, tmp_path) -> None:
        cli("{}")
        assert run_extraction.main(["--schema-file", str(tmp_path / "missing.yaml")]) == 2
        # no log file for a run that never started
        assert not (tmp_path / "logs").exists()

    def test_missing_input_file(self, cli, tmp_path) -> None:
        invokers = cli('{"label": "bug", "confidence": 0.8}')
        status = run_extraction.main([
            "--schema", "classification", "--input", str(tmp_path / "missing.txt"),
        ])
        assert status == 2
        assert invokers == []
        assert not (tmp_path / "logs").exists()

    def test_missing_image(self, cli, tmp_path) -> None:
        invokers = cli('{"label": "bug", "confidence": 0.8}')
        status = run_extraction.main([
            "--schema", "classification", "--image", str(tmp_path / "missing.png"),
        ])
        assert status == 2
        assert invokers == []

    def test_unknown_image_type(self, cli, tmp_path) -> None:
        invokers = cli('{"label": "bug", "confidence": 0.8}')
        image = tmp_path / "screen.unknownext"
        image.write_bytes(b"data")
        status = run_extraction.main(["--schema", "classification", "--image", str(image)])
        assert status == 2
        assert invokers == []

    def test_image_attachment(self, cli, tmp_path) -> None:
        invokers = cli('{"label": "bug", "confidence": 0.8}')
        image = tmp_path / "screen.png"
        image.write_bytes(b"\x89PNG")

        run_extraction.main(["--schema", "classification", "--image", str(image)])
        attachment = invokers[0].requests[0].attachments[0]
        assert attachment.mime_type == "image/png"
        assert attachment.data_uri.startswith("data:image/png;base64,")
