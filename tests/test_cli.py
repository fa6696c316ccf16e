import json
import sys

import pytest

from texgraph import run_pipeline


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["texgraph", *argv])
    with pytest.raises(SystemExit) as exc:
        run_pipeline.main()
    return exc.value.code


def test_local_run_writes_graph(monkeypatch, tmp_path, capsys, two_chunk_document):
    source = tmp_path / "doc.tex"
    source.write_text(two_chunk_document, encoding="utf-8")
    output = tmp_path / "graph.json"

    code = _run(monkeypatch, str(source), "--local", "--prune", "--output", str(output))

    assert code == 0
    assert "Done (local)" in capsys.readouterr().out
    doc = json.loads(output.read_text(encoding="utf-8"))
    ids = {n["id"] for n in doc["graph"]["nodes"]}
    assert {"tex:x", "tex:y"} <= ids


def test_preview_prints_titles(monkeypatch, tmp_path, capsys, two_chunk_document):
    source = tmp_path / "doc.tex"
    source.write_text(two_chunk_document, encoding="utf-8")

    code = _run(monkeypatch, str(source), "--preview")

    out = capsys.readouterr().out
    assert code == 0
    assert "2 chunk(s)" in out
    assert "Basics" in out and "Results" in out


def test_missing_input_exits_with_error(monkeypatch, tmp_path, capsys):
    code = _run(monkeypatch, str(tmp_path / "nothing.tex"), "--local")

    assert code == 2
    assert "Error:" in capsys.readouterr().err
