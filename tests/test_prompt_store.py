from __future__ import annotations

import json

import pytest

from kajig.config import settings
from kajig.services.prompt_store import catalog_path, load_catalog, render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt(
        "evolution.synthetic_payload",
        name="Guest Mode Enabled",
        category="policy",
        vector="Guest sessions are allowed on a managed device",
    )
    assert "Guest Mode Enabled" in prompt
    assert "(category: policy)" in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_reports_missing_template_value():
    with pytest.raises(KeyError, match="dump"):
        render_prompt("evolution.dump_analysis")


def test_prompts_path_setting_overrides_bundled_catalog(tmp_path, monkeypatch):
    catalog = tmp_path / "prompts.json"
    catalog.write_text(json.dumps({"chat": {"system_prompt": "Lab prompt for $device"}}), encoding="utf-8")
    monkeypatch.setattr(settings, "prompts_path", str(catalog))

    assert catalog_path() == catalog
    assert render_prompt("chat.system_prompt", device="lab-01") == "Lab prompt for lab-01"


def test_catalog_must_be_a_json_object(tmp_path):
    catalog = tmp_path / "prompts.json"
    catalog.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError):
        load_catalog(catalog)


def test_parsed_catalog_is_reused_until_file_changes():
    assert load_catalog() is load_catalog()
