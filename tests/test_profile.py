"""
Tests for the corpus profile and its JSON override.
"""

import json

import pytest

from src.rag.profile import DEFAULT_PROFILE, DocRule, load_profile, profile_from_dict


class TestDocRule:
    @pytest.mark.unit
    def test_doc_all_only(self):
        rule = DocRule(doc_all=("module4", "2025"))
        assert rule.matches("WHO-Module4-Treatment-2025", "")
        assert not rule.matches("who-module4-treatment-2022", "")

    @pytest.mark.unit
    def test_doc_any_or_section_any(self):
        rule = DocRule(doc_all=("module3",), doc_any=("diag",), section_any=("diagnosis",))
        assert rule.matches("who-module3-diag-2024", "Annex")
        assert rule.matches("who-module3-2024", "Chapter 2 | Diagnosis of TB")
        assert not rule.matches("who-module3-2024", "Annex")

    @pytest.mark.unit
    def test_none_values(self):
        assert not DocRule(doc_all=("module1",)).matches(None, None)


class TestProfileOverride:
    @pytest.mark.unit
    def test_default_profile_without_path(self):
        assert load_profile("") is DEFAULT_PROFILE

    @pytest.mark.unit
    def test_overlay_from_dict(self):
        profile = profile_from_dict(
            {
                "authority_boost": 1.05,
                "prose_cap": "10",
                "legacy_tpt_sections": ["3.3.7"],
                "current_tpt": {"doc_all": ["module1", "tpt", "2026"]},
            }
        )
        assert profile.authority_boost == 1.05
        assert profile.prose_cap == 10
        assert profile.legacy_tpt_sections == ("3.3.7",)
        assert profile.current_tpt.matches("who-module1-tpt-2026", "")
        assert profile.ds_penalty == DEFAULT_PROFILE.ds_penalty

    @pytest.mark.unit
    def test_unknown_keys_kept_and_reported(self, caplog):
        profile = profile_from_dict({"future_knob": 1})
        assert profile.extra == {"future_knob": 1}
        assert "future_knob" in caplog.text

    @pytest.mark.unit
    def test_wrong_shape_rejected(self):
        with pytest.raises(ValueError):
            profile_from_dict({"current_tpt": ["module1"]})
        with pytest.raises(ValueError):
            profile_from_dict({"stale_table_subtypes": "regimen"})

    @pytest.mark.unit
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "profile.json"
        path.write_text(json.dumps({"max_top_k": 5}), encoding="utf-8")
        assert load_profile(str(path)).max_top_k == 5

    @pytest.mark.unit
    def test_non_object_file_rejected(self, tmp_path):
        path = tmp_path / "profile.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError):
            load_profile(str(path))
