import json
import os
from unittest.mock import AsyncMock, patch

import pytest

from dalle_mcp.cli import build_arg_parser, main
from tests.conftest import make_image


@pytest.fixture(autouse=True)
def _no_api_env(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)


def _json_out(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestStats:
    def test_json(self, tmp_path, capsys):
        make_image(tmp_path, "a.png", age_days=3, size=2048)
        assert main(["stats", "-d", str(tmp_path), "--json"]) == 0
        data = _json_out(capsys)
        assert data["count"] == 1
        assert data["total_size"] == 2048
        assert data["oldest_file"]["age_days"] == 3

    def test_text(self, tmp_path, capsys):
        make_image(tmp_path, "a.png", size=2048)
        assert main(["stats", "-d", str(tmp_path)]) == 0
        out = capsys.readouterr().out
        assert "Total Images: 1" in out
        assert "Total Size: 2 KB" in out

    def test_empty(self, tmp_path, capsys):
        assert main(["stats", "-d", str(tmp_path)]) == 0
        assert "No images found." in capsys.readouterr().out


class TestCleanup:
    def test_json(self, tmp_path, capsys):
        make_image(tmp_path, "old.png", age_days=10, size=10)
        make_image(tmp_path, "new.png", age_days=1, size=10)
        assert main(["cleanup", "-d", str(tmp_path), "-r", "7", "--json"]) == 0
        data = _json_out(capsys)
        assert data["files_deleted"] == 1
        assert data["success"] is True
        assert os.listdir(tmp_path) == ["new.png"]

    def test_max_files(self, tmp_path, capsys):
        for i in range(4):
            make_image(tmp_path, f"img{i}.png", age_days=i)
        assert main(["cleanup", "-d", str(tmp_path), "-m", "2", "--json"]) == 0
        assert _json_out(capsys)["files_deleted"] == 2
        assert sorted(os.listdir(tmp_path)) == ["img0.png", "img1.png"]

    def test_dry_run(self, tmp_path, capsys):
        make_image(tmp_path, "old.png", age_days=10)
        assert main(["cleanup", "-d", str(tmp_path), "--dry-run"]) == 0
        out = capsys.readouterr().out
        assert "DRY RUN MODE" in out
        assert "Files deleted: 1" in out
        assert (tmp_path / "old.png").exists()

    def test_failure_exit_code(self, tmp_path, capsys):
        make_image(tmp_path, "old.png", age_days=10)
        with patch("dalle_mcp.cleanup.aiofiles.os.remove", AsyncMock(side_effect=PermissionError(13, "Permission denied"))):
            assert main(["cleanup", "-d", str(tmp_path)]) == 1
        assert "Permission denied" in capsys.readouterr().out

    def test_unreadable_directory(self, tmp_path, capsys):
        not_a_dir = make_image(tmp_path, "file.png")
        assert main(["cleanup", "-d", str(not_a_dir)]) == 1
        assert "Cannot read directory" in capsys.readouterr().err

    def test_oversized_retention(self, tmp_path, capsys):
        make_image(tmp_path, "old.png", age_days=10)
        assert main(["cleanup", "-d", str(tmp_path), "-r", "1e12"]) == 1
        assert "Invalid cleanup policy" in capsys.readouterr().err
        assert (tmp_path / "old.png").exists()


class TestList:
    def test_sort_by_size(self, tmp_path, capsys):
        make_image(tmp_path, "small.png", size=10)
        make_image(tmp_path, "big.png", size=1000)
        assert main(["list", "-d", str(tmp_path), "--sort", "size", "-l", "1", "--json"]) == 0
        data = _json_out(capsys)
        assert data["total"] == 2
        assert [f["name"] for f in data["files"]] == ["big.png"]

    def test_default_sort_is_oldest_first(self, tmp_path, capsys):
        make_image(tmp_path, "new.png", age_days=1)
        make_image(tmp_path, "old.png", age_days=5)
        assert main(["list", "-d", str(tmp_path), "--json"]) == 0
        assert [f["name"] for f in _json_out(capsys)["files"]] == ["old.png", "new.png"]

    def test_missing_directory(self, tmp_path, capsys):
        assert main(["list", "-d", str(tmp_path / "nope")]) == 0
        assert "No images found." in capsys.readouterr().out


class TestValidateConfig:
    def test_missing_key(self, capsys):
        assert main(["validate-config", "--skip-api-check"]) == 1
        assert "OPENAI_API_KEY" in capsys.readouterr().err

    def test_valid(self, monkeypatch, capsys):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test-" + "a" * 40)
        assert main(["validate-config", "--skip-api-check"]) == 0
        assert "Configuration is valid!" in capsys.readouterr().out


class TestGenerate:
    def test_invalid_parameters(self, capsys):
        assert main(["generate", "a fox", "-m", "dall-e-2", "-q", "hd"]) == 1
        assert "Invalid quality" in capsys.readouterr().err

    def test_missing_key(self, capsys):
        assert main(["generate", "a fox"]) == 1
        assert "API key not found" in capsys.readouterr().err

    def test_success(self, capsys):
        images = [{"url": "https://images.example.com/a.png", "file_path": "/out/image_1.png"}]
        with patch("dalle_mcp.cli.ImageGenerationClient") as client_cls:
            client_cls.return_value.generate_and_save = AsyncMock(return_value=images)
            assert main(["generate", "a fox"]) == 0
        out = capsys.readouterr().out
        assert "File: /out/image_1.png" in out


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_arg_parser().parse_args([])
