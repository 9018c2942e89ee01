from __future__ import annotations

import json
from pathlib import Path

import pytest

from jr_engine.fusion.contract import (
    RankingConfig,
    RankingConfigError,
    load_ranking_config,
    ranking_config_from_env,
    resolve_ranking_config,
)


def test_defaults() -> None:
    config = RankingConfig()
    assert (config.vector_weight, config.bandit_weight, config.behavior_weight) == (0.6, 0.4, 0.0)
    assert config.exposure_top_n == 3
    assert config.decay_lambda == 0.05
    assert config.candidate_pool_size(10) == 30
    assert config.candidate_pool_size(20) == 50
    assert config.candidate_pool_size(0) == 0


def test_load_ranking_config(tmp_path: Path) -> None:
    path = tmp_path / "ranking.json"
    path.write_text(json.dumps({"vector_weight": 0.7, "bandit_weight": 0.3, "rewards": {"apply": 4}}), encoding="utf-8")
    config = load_ranking_config(path)
    assert config.vector_weight == 0.7
    assert config.rewards == {"apply": 4.0}


def test_load_ranking_config_errors(tmp_path: Path) -> None:
    with pytest.raises(RankingConfigError, match="missing"):
        load_ranking_config(tmp_path / "absent.json")

    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{not json", encoding="utf-8")
    with pytest.raises(RankingConfigError, match="JSON"):
        load_ranking_config(bad_json)

    unknown = tmp_path / "unknown.json"
    unknown.write_text(json.dumps({"vector_weight": 0.5, "surprise": 1}), encoding="utf-8")
    with pytest.raises(RankingConfigError):
        load_ranking_config(unknown)

    out_of_range = tmp_path / "range.json"
    out_of_range.write_text(json.dumps({"bandit_weight": 1.5}), encoding="utf-8")
    with pytest.raises(RankingConfigError):
        load_ranking_config(out_of_range)

    wrong_schema = tmp_path / "schema.json"
    wrong_schema.write_text(json.dumps({"schema_version": 2}), encoding="utf-8")
    with pytest.raises(RankingConfigError):
        load_ranking_config(wrong_schema)


def test_env_overlay_validates_each_value(caplog) -> None:
    config = ranking_config_from_env(
        environ={
            "JOBREC_VECTOR_WEIGHT": "0.7",
            "JOBREC_BANDIT_WEIGHT": "abc",
            "JOBREC_EXPOSURE_TOP_N": "5",
            "JOBREC_FALLBACK_LIMIT": "-3",
        }
    )
    assert config.vector_weight == 0.7
    assert config.bandit_weight == 0.4
    assert config.exposure_top_n == 5
    assert config.fallback_limit == 50
    assert "JOBREC_BANDIT_WEIGHT" in caplog.text
    assert "JOBREC_FALLBACK_LIMIT" in caplog.text


def test_resolve_ranking_config_reads_file_then_env(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "ranking.json"
    path.write_text(json.dumps({"exposure_top_n": 1, "decay_lambda": 0.1}), encoding="utf-8")
    monkeypatch.setenv("JOBREC_DECAY_LAMBDA", "0.2")
    config = resolve_ranking_config(str(path))
    assert config.exposure_top_n == 1
    assert config.decay_lambda == 0.2
    assert resolve_ranking_config(None).exposure_top_n == 3
