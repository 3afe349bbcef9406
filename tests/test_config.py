"""TOML config loading and profile overlay."""

from snarkels.config.settings import Settings, _deep_merge, get_settings


def test_deep_merge_overrides_nested_keys():
    base = {"chain": {"rpc_url": "a", "start_block": 1}, "api": {"port": 8000}}
    merged = _deep_merge(base, {"chain": {"start_block": 5}})
    assert merged == {"chain": {"rpc_url": "a", "start_block": 5}, "api": {"port": 8000}}


def test_profile_overlay(tmp_path):
    (tmp_path / "default.toml").write_text(
        '[storage]\ndb_path = "data/main.duckdb"\n\n[chain]\nstart_block = 100\nmax_block_range = 2000\n'
    )
    (tmp_path / "dev.toml").write_text('[chain]\nstart_block = 5\n\n[logging]\nlevel = "DEBUG"\n')
    settings = get_settings("dev", tmp_path)
    assert settings.start_block == 5
    assert settings.max_block_range == 2000
    assert settings.db_path == "data/main.duckdb"
    assert settings.logging_level == "DEBUG"


def test_defaults_without_config(tmp_path):
    settings = get_settings(None, tmp_path)
    assert settings.rpc_url == "https://forno.celo.org"
    assert settings.market_creation_cost_wei == 10**16
    assert settings.listener_name == "prediction_market_core"
    assert Settings().api_port == 8000
