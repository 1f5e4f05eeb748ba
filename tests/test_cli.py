import pytest

from docfill import cli


@pytest.fixture(autouse=True)
def quiet_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DOCFILL_RETRY_DELAY", "0")
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "output"))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")


@pytest.fixture
def sources(tmp_path):
    template = tmp_path / "letter.md.j2"
    template.write_text("Dear {{ name }}, you owe {{ amount|currency }}.\n", encoding="utf-8")
    data = tmp_path / "letter.csv"
    data.write_text("name,Ana\namount,\"10,5\"\n", encoding="utf-8")
    return template, data


def test_generates_requested_formats(sources, tmp_path, capsys):
    template, data = sources
    out = tmp_path / "out"
    code = cli.main(["--template", str(template), "--data", str(data), "--out", str(out), "--format", "md,csv"])
    assert code == 0
    assert "10,50 €" in (out / "letter.md").read_text(encoding="utf-8")
    assert (out / "letter-fields.csv").exists()
    printed = capsys.readouterr().out
    assert "Wrote" in printed
    assert "2 total, 2 resolved, 0 missing" in printed


def test_skeleton_mode(sources, tmp_path, capsys):
    template, _ = sources
    code = cli.main(["--template", str(template), "--skeleton", "--out", str(tmp_path)])
    assert code == 0
    lines = (tmp_path / "letter-skeleton.csv").read_text(encoding="utf-8").splitlines()
    assert lines[1:] == ["name,,Field: name", "amount,,Field: amount"]


def test_errors_exit_non_zero(tmp_path, capsys):
    code = cli.main(["--template", str(tmp_path / "missing.md")])
    assert code == 1
    assert "VALIDATION_ERROR [validating]" in capsys.readouterr().err
