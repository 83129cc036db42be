# File: tests/test_cli.py

import json
import zipfile

import pytest
from click.testing import CliRunner

from core.project_state_manager import ProjectStateManager
from core.state_models import IntegrationKind
from main import main


@pytest.fixture
def project_file(tmp_path, seeded_state):
    path = tmp_path / "bakery.json"
    path.write_text(json.dumps(seeded_state.to_dict()), encoding="utf-8")
    return path


def _invoke(tmp_path, *args):
    return CliRunner().invoke(main, ["--config-dir", str(tmp_path / "config"), *args])


def _reload(path):
    return ProjectStateManager.from_dict(json.loads(path.read_text(encoding="utf-8"))).project


def test_download_writes_zip_named_after_project(tmp_path, project_file):
    out_dir = tmp_path / "downloads"
    out_dir.mkdir()

    result = _invoke(tmp_path, "download", str(project_file), "--out", str(out_dir))

    assert result.exit_code == 0, result.output
    with zipfile.ZipFile(out_dir / "bakery.zip") as zf:
        assert zf.read("index.html").decode("utf-8") == "<html><body>v1</body></html>"
        assert zf.read("style.css").decode("utf-8") == "body { color: black; }"


def test_download_of_empty_project_fails_cleanly(tmp_path, empty_state):
    path = tmp_path / "empty.json"
    path.write_text(json.dumps(empty_state.to_dict()), encoding="utf-8")

    result = _invoke(tmp_path, "download", str(path), "--out", str(tmp_path))

    assert result.exit_code != 0
    assert "no files to download" in result.output
    assert not (tmp_path / "bakery.zip").exists()


def test_rename_is_saved(tmp_path, project_file):
    result = _invoke(tmp_path, "rename", str(project_file), "Corner Bakery")

    assert result.exit_code == 0, result.output
    assert _reload(project_file).name == "Corner Bakery"


def test_connect_github_stores_credentials(tmp_path, project_file):
    result = _invoke(tmp_path, "connect", "github", str(project_file), "https://github.com/me/site",
                     "--token", "t0k", "--branch", "pages")

    assert result.exit_code == 0, result.output
    assert 'connected to Github' in result.output
    creds = _reload(project_file).integrations[IntegrationKind.GITHUB]
    assert creds.repo_url == "https://github.com/me/site"
    assert creds.branch == "pages"


def test_learn_persists_learning(tmp_path):
    result = _invoke(tmp_path, "learn", "Prefer warm colors")

    assert result.exit_code == 0, result.output
    saved = json.loads((tmp_path / "config" / "learnings.json").read_text(encoding="utf-8"))
    assert any(item["content"] == "Prefer warm colors" for item in saved)
