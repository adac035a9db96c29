"""
Tests for the configuration module.

Covers built-in defaults, JSON and YAML overlays, the environment variable
lookup and rejection of malformed files.
"""
from __future__ import annotations

import json
from pathlib import Path

import pytest

try:
    from siteaudit import config as config_module
    from siteaudit.config import (
        CONFIG_ENV_VAR,
        SiteAuditConfig,
        config_from_dict,
        get_config,
        load_config,
    )
    from siteaudit.errors import ConfigError
    from siteaudit.models import IssueCategory, Severity
    HAS_MODULE = True
except ImportError:
    HAS_MODULE = False

pytestmark = pytest.mark.skipif(
    not HAS_MODULE, reason="config module not available"
)

EXAMPLE_CONFIG = Path(__file__).parent.parent / "configs" / "siteaudit.example.yaml"


# ===================================================================
# Fixtures
# ===================================================================

@pytest.fixture
def write_json(tmp_path):
    def _write(data, name="siteaudit.json"):
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setattr(config_module, "_config_instance", None)


# ===================================================================
# Defaults
# ===================================================================

class TestDefaults:
    """Built-in values."""

    def test_no_source_gives_defaults(self):
        assert load_config() == SiteAuditConfig()

    def test_default_values(self):
        config = SiteAuditConfig()
        assert config.graph.authority_strategy == "path"
        assert config.graph.path_max_depth is None
        assert config.graph.path_work_budget == 200_000
        assert config.duplicates.min_shared_segments == 1
        assert config.scoring.severity_weights[Severity.HIGH] == 15.0
        assert "co.uk" in config.canonicalizer.compound_suffixes
        assert sum(config.scoring.overall_weights.values()) == pytest.approx(1.0)
        assert IssueCategory.PERFORMANCE not in config.scoring.overall_weights

    def test_every_category_has_fallback_bucket(self):
        for category, buckets in SiteAuditConfig().scoring.buckets.items():
            assert any(not b.keywords for b in buckets), category


# ===================================================================
# Overlays
# ===================================================================

class TestOverlay:
    """config_from_dict() and file loading."""

    def test_partial_overlay_keeps_other_defaults(self):
        config = config_from_dict({"graph": {"top_n": 3}})
        assert config.graph.top_n == 3
        assert config.graph.hub_min_outgoing == 5
        assert config.scoring == SiteAuditConfig().scoring

    def test_scoring_tables(self):
        config = config_from_dict({
            "scoring": {
                "severity_weights": {"high": 20},
                "overall_weights": {"technical": 1.0},
                "buckets": {
                    "on-page": [{"name": "everything", "keywords": [], "cap": 100}],
                },
                "robots_txt_penalty": 5,
            }
        })
        scoring = config.scoring
        assert scoring.severity_weights[Severity.HIGH] == 20.0
        assert scoring.severity_weights[Severity.LOW] == 3.0
        assert scoring.overall_weights == {IssueCategory.TECHNICAL: 1.0}
        assert [b.name for b in scoring.buckets[IssueCategory.ON_PAGE]] == ["everything"]
        assert len(scoring.buckets[IssueCategory.TECHNICAL]) == 7
        assert scoring.robots_txt_penalty == 5

    def test_synonym_rules(self):
        config = config_from_dict({
            "issues": {"synonym_rules": [{"match": ["absent"], "token": "missing"}]}
        })
        assert config.issues.synonym_rules == ((("absent",), "missing"),)

    def test_json_file(self, write_json):
        path = write_json({"duplicates": {"max_extra_depth": 2}})
        assert load_config(str(path)).duplicates.max_extra_depth == 2

    def test_env_var(self, write_json, monkeypatch):
        path = write_json({"graph": {"authority_strategy": "iterative"}})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().graph.authority_strategy == "iterative"
        assert get_config().graph.authority_strategy == "iterative"

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_example_yaml(self):
        pytest.importorskip("yaml")
        config = load_config(str(EXAMPLE_CONFIG))
        assert config.canonicalizer.compound_suffixes[0] == "co.uk"
        assert isinstance(config.canonicalizer.compound_suffixes, tuple)
        assert config.issues.synonym_rules[2][0][-1] == "no"
        assert config.scoring.overall_weights[IssueCategory.ON_PAGE] == 0.25

    def test_empty_yaml(self, tmp_path):
        pytest.importorskip("yaml")
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")
        assert load_config(str(path)) == SiteAuditConfig()


# ===================================================================
# Errors
# ===================================================================

class TestConfigErrors:
    """Malformed configuration raises ConfigError."""

    def test_unknown_section(self):
        with pytest.raises(ConfigError):
            config_from_dict({"crawler": {}})

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="top_k"):
            config_from_dict({"graph": {"top_k": 3}})

    def test_unknown_strategy(self):
        with pytest.raises(ConfigError, match="authority_strategy"):
            config_from_dict({"graph": {"authority_strategy": "pagerank"}})

    def test_bad_severity_key(self):
        with pytest.raises(ConfigError):
            config_from_dict({"scoring": {"severity_weights": {"critical": 30}}})

    def test_bad_synonym_rules(self):
        with pytest.raises(ConfigError):
            config_from_dict({"issues": {"synonym_rules": [{"token": "missing"}]}})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_non_mapping_root(self, write_json):
        with pytest.raises(ConfigError):
            load_config(str(write_json([1, 2, 3])))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_config(str(tmp_path / "nope.json"))
        assert exc_info.value.path.endswith("nope.json")
