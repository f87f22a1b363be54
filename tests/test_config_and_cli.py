from __future__ import annotations

import json
from pathlib import Path

from PIL import Image

from testarchitect.cli import main
from testarchitect.config import Settings
from testarchitect.factory import build_healer, build_llm, build_orchestrator
from testarchitect.models.mock import MockLLM
from testarchitect.models.ollama import OllamaLLM
from testarchitect.models.openai_compat import OpenAICompatLLM


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("MAX_STEPS", "7")
    monkeypatch.setenv("HEAL_CASCADE", "true")
    monkeypatch.setenv("VISUAL_THRESHOLD", "0.05")
    monkeypatch.setenv("TEST_ID_ATTRIBUTE", "data-test")
    settings = Settings()
    assert settings.max_steps == 7
    assert settings.heal_cascade is True
    assert settings.visual_threshold == 0.05
    assert settings.test_id_attribute == "data-test"
    assert settings.visual_include_aa is False


def test_build_llm_selects_backend(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert isinstance(build_llm(Settings(llm_provider="openai")), MockLLM)
    assert isinstance(build_llm(Settings(llm_provider="ollama")), OllamaLLM)
    configured = build_llm(
        Settings(
            llm_provider="openai",
            openai_api_key="sk-test",
            openai_extra_headers='{"X-Team": "qa"}',
        )
    )
    assert isinstance(configured, OpenAICompatLLM)
    assert configured.extra_headers == {"X-Team": "qa"}


def test_factories_apply_settings(tmp_path):
    settings = Settings(max_steps=4, output_dir=str(tmp_path), heal_cascade=True, verify_timeout_ms=250)
    orchestrator = build_orchestrator(settings, MockLLM())
    assert orchestrator.max_steps == 4
    assert orchestrator.output_dir == tmp_path
    healer = build_healer(settings)
    assert healer.cascade is True
    assert healer.verify_timeout_ms == 250


def test_cli_generate_without_url(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    code = main(["--mock", "--output-dir", str(tmp_path / "out"), "generate", "checkout", "--team", "payments"])
    assert code == 0
    output = capsys.readouterr().out
    assert "Steps: 4" in output
    assert (tmp_path / "out" / "teams" / "payments" / "checkout" / "checkout.spec.ts").exists()


def test_cli_scan_lists_selectors(tmp_path, capsys):
    (tmp_path / "cart.spec.ts").write_text("await page.locator('#buy').click();\n", encoding="utf-8")
    assert main(["scan", str(tmp_path)]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert listed[0]["selector"] == "#buy"
    assert listed[0]["line_number"] == 1


def test_cli_heal_missing_file(tmp_path, capsys):
    code = main(["--mock", "heal", "https://app.test", "#buy", str(tmp_path / "missing.spec.ts")])
    assert code == 2
    assert "Source file not found" in capsys.readouterr().out


def test_cli_baseline_commands(tmp_path, monkeypatch):
    monkeypatch.setenv("VISUAL_DIR", str(tmp_path / "visual"))
    capture = tmp_path / "capture.png"
    Image.new("RGB", (8, 8), (10, 20, 30)).save(capture)
    assert main(["update-baseline", "Cart Page", str(capture)]) == 0
    check_dir = tmp_path / "visual" / "cart-page"
    assert (check_dir / "baseline.png").exists()
    for index in range(3):
        (check_dir / f"current-2024-01-0{index + 1}.png").write_bytes(b"x")
    assert main(["cleanup", "Cart Page", "--keep", "1"]) == 0
    assert [path.name for path in check_dir.glob("current-*.png")] == ["current-2024-01-03.png"]
    assert Path(check_dir / "baseline.png").exists()


def test_cli_update_merges_into_generated_package(tmp_path, capsys):
    out = tmp_path / "out"
    assert main(["--mock", "--output-dir", str(out), "generate", "checkout", "--team", "payments"]) == 0
    feature_dir = out / "teams" / "payments" / "checkout"
    capsys.readouterr()
    code = main(["--mock", "update", str(feature_dir), "--requirements", "payment form", "--no-backup"])
    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["added"] == ["FUNC002"]
    assert summary["updated"] == ["FUNC001", "ACC001", "PERF001"]
    assert summary["backup_path"] is None
    assert "FUNC002" in (feature_dir / "checkout.feature.ts").read_text(encoding="utf-8")


def test_cli_selective_update_needs_ids(tmp_path, capsys):
    assert main(["--mock", "update", str(tmp_path), "--requirements", "x", "--mode", "selective"]) == 2
    assert "at least one scenario id" in capsys.readouterr().out
