import pytest
import yaml

from wikirank.shared.config import (
    Config,
    Settings,
    get_config,
    load_config,
    reload_config,
    validate_config_at_startup,
)


def test_defaults_match_ranking_constants():
    config = Config()
    composite = config.search.composite

    assert (composite.vector_weight, composite.lexical_weight) == (0.3, 0.4)
    assert (composite.title_weight, composite.label_weight) == (0.2, 0.1)
    assert composite.weight_sum == pytest.approx(1.0)
    assert composite.top_n == 100
    assert config.search.fusion.rrf_k == 60
    assert config.search.filters.min_content_length == 100
    assert config.keywords.max_keywords == 12
    assert config.search.title_rescue.max_candidates == 10


def test_lexical_limit_has_floor():
    retrieval = Config().search.retrieval
    assert retrieval.lexical_limit(10) == 150
    assert retrieval.lexical_limit(100) == 250
    assert retrieval.lexical_limit(61) == 153


def test_load_config_from_explicit_path(monkeypatch, tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "search": {"fusion": {"rrf_k": 30}, "composite": {"top_n": 20}},
                "cache": {"search": {"ttl_seconds": 60, "policy": "fifo"}},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("CONFIG_PATH", str(path))
    monkeypatch.setenv("QDRANT_HOST", "qdrant.internal")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config, settings = load_config()

    assert settings.config_path == str(path)
    assert config.search.fusion.rrf_k == 30
    assert config.search.composite.top_n == 20
    assert config.cache.search.policy == "fifo"
    assert config.cache.title.ttl_seconds == 1800
    assert config.vector_store.host == "qdrant.internal"
    assert config.app.log_level == "DEBUG"


def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "absent.yaml"))
    with pytest.raises(FileNotFoundError):
        load_config()


def test_bundled_development_config_loads(monkeypatch):
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    monkeypatch.setenv("ENV", "development")

    config, settings = load_config()

    assert settings.env == "development"
    assert config.search.retrieval.over_fetch_factor == 30
    assert config.search.fusion.source_weights["title-exact"] == 1.0


def test_reload_config_replaces_global(monkeypatch, tmp_path):
    path = tmp_path / "reload.yaml"
    path.write_text("search:\n  default_top_k: 7\n", encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(path))

    reload_config()
    assert get_config().search.default_top_k == 7

    path.write_text("search:\n  default_top_k: 3\n", encoding="utf-8")
    reload_config()
    assert get_config().search.default_top_k == 3


class TestStartupValidation:
    def test_zero_composite_weights_rejected(self):
        config = Config()
        composite = config.search.composite
        composite.vector_weight = composite.lexical_weight = 0.0
        composite.title_weight = composite.label_weight = 0.0
        with pytest.raises(ValueError, match="composite"):
            validate_config_at_startup(config, Settings())

    def test_inverted_title_thresholds_rejected(self):
        config = Config()
        config.search.title_match.partial_threshold = 0.9
        with pytest.raises(ValueError, match="partial_threshold"):
            validate_config_at_startup(config, Settings())

    def test_negative_source_weight_rejected(self):
        config = Config()
        config.search.fusion.source_weights["lexical"] = -1.0
        with pytest.raises(ValueError, match="lexical"):
            validate_config_at_startup(config, Settings())

    def test_unnormalised_weights_only_warn(self):
        config = Config()
        config.search.composite.vector_weight = 0.5
        validate_config_at_startup(config, Settings())
