from __future__ import annotations

import pytest

from fixtures import DataHome
from study_tracker import config as config_mod


def test_missing_config_uses_defaults(data_home: DataHome) -> None:
    cfg = config_mod.load_config(env=data_home.env)

    assert cfg == config_mod.default_config()
    assert cfg.ai.chat_model == "gpt-4o-mini"
    assert cfg.ai.search_model == "gpt-4o-mini-search-preview"
    assert cfg.session.tick_seconds == 1.0
    assert cfg.logging.level == "INFO"
    assert cfg.data_home is None


def test_workspace_config_overrides_defaults(data_home: DataHome) -> None:
    data_home.write(
        "data/config/tracker.toml",
        """
[ai]
chat_model = "gpt-4.1-mini"
temperature = 0.7

[session]
tick_seconds = 2

[logging]
level = "debug"
""",
    )

    cfg = config_mod.load_config(env=data_home.env)

    assert cfg.ai.chat_model == "gpt-4.1-mini"
    assert cfg.ai.temperature == 0.7
    assert cfg.ai.max_tokens == 2000
    assert cfg.session.tick_seconds == 2.0
    assert cfg.logging.level == "DEBUG"


def test_env_config_path_and_data_home(tmp_path, data_home: DataHome) -> None:
    path = data_home.write(
        "elsewhere.toml",
        '[paths]\ndata_home = "{0}"\n'.format((tmp_path / "custom").as_posix()),
    )
    env = {config_mod.CONFIG_PATH_ENV: str(path)}

    cfg = config_mod.load_config(env=env)

    assert cfg.data_home == (tmp_path / "custom").resolve()


@pytest.mark.parametrize(
    "body",
    [
        "[ai]\nmodel = 'x'\n",
        "[extras]\nflag = true\n",
        "[ai]\ntemperature = 3.5\n",
        "[ai]\nmax_tokens = 0\n",
        "[session]\ntick_seconds = 0\n",
        "[logging]\nlevel = 'LOUD'\n",
        "[logging]\nverbose = 'yes'\n",
        "ai = 1\n",
        "[ai\n",
    ],
)
def test_invalid_config_is_rejected(data_home: DataHome, body: str) -> None:
    path = data_home.write("bad.toml", body)

    with pytest.raises(config_mod.ConfigError):
        config_mod.load_config(explicit_path=path)


def test_explicit_missing_path_errors(tmp_path) -> None:
    with pytest.raises(config_mod.ConfigError):
        config_mod.load_config(explicit_path=tmp_path / "missing.toml")


def test_template_round_trips_to_defaults(tmp_path) -> None:
    target = tmp_path / "tracker.toml"

    config_mod.write_template(target)

    assert config_mod.load_config(explicit_path=target) == (
        config_mod.default_config()
    )
    with pytest.raises(config_mod.ConfigError):
        config_mod.write_template(target)
    config_mod.write_template(target, overwrite=True)
