import pytest

from cryptoscope.errors import ConfigError
from cryptoscope.settings import (
    DEFAULT_EXCLUDED_DIRS,
    ScanSettings,
    env_overrides,
    load_settings,
    settings_from_mapping,
    user_settings_path,
)


@pytest.fixture(autouse=True)
def isolated_user_dir(tmp_path, monkeypatch):
    # keep real per-user settings out of the tests
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


def test_defaults():
    s = load_settings(environ={})
    assert s == ScanSettings()
    assert s.file_timeout == 30.0
    assert s.workers == 1
    assert s.excluded_dirs == list(DEFAULT_EXCLUDED_DIRS)
    assert s.external_analyzer is None


def test_yaml_file(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text(
        "workers: 4\nfile-timeout: 2.5\nexclude_globs: [vendor, '*.min.js']\nstrict_parse: yes\n",
        encoding="utf-8",
    )
    s = load_settings(str(p), environ={})
    assert s.workers == 4
    assert s.file_timeout == 2.5
    assert s.exclude_globs == ["vendor", "*.min.js"]
    assert s.strict_parse is True


def test_json_file_and_env_override(tmp_path):
    p = tmp_path / "settings.json"
    p.write_text('{"workers": 2, "snippet_radius": 40}', encoding="utf-8")
    env = {
        "CRYPTOSCOPE_WORKERS": "6",
        "CRYPTOSCOPE_EXCLUDE_GLOBS": "vendor/**, *.min.js",
        "CRYPTOSCOPE_NOT_A_SETTING": "ignored",
        "PATH": "/bin",
    }
    s = load_settings(str(p), environ=env)
    assert s.workers == 6
    assert s.snippet_radius == 40
    assert s.exclude_globs == ["vendor/**", "*.min.js"]


def test_env_overrides_filters_prefix():
    assert env_overrides({"CRYPTOSCOPE_STRICT_PARSE": "1", "OTHER": "x"}) == {"strict_parse": "1"}


def test_user_settings_file_is_picked_up(tmp_path):
    d = tmp_path / "xdg" / "CryptoScope"
    d.mkdir(parents=True)
    (d / "settings.yaml").write_text("detector_threads: 3\n", encoding="utf-8")
    assert user_settings_path() == d / "settings.yaml"
    assert load_settings(environ={}).detector_threads == 3


@pytest.mark.parametrize(
    "data",
    [
        {"unknown_key": 1},
        {"workers": "many"},
        {"workers": 0},
        {"file_timeout": -1},
        {"strict_parse": "perhaps"},
        {"external_analyzer": "codeql"},
        {"external_analyzer": "sarif"},
        {"exclude_globs": 5},
    ],
)
def test_invalid_settings(data):
    with pytest.raises(ConfigError):
        settings_from_mapping(data)


@pytest.mark.parametrize("content", ["[1, 2]", "workers: [unclosed"])
def test_bad_settings_file(tmp_path, content):
    p = tmp_path / "s.yaml"
    p.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(str(p), environ={})


def test_missing_settings_file(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(str(tmp_path / "missing.yaml"), environ={})


def test_empty_settings_file(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_settings(str(p), environ={}) == ScanSettings()


def test_with_overrides_skips_none_and_validates():
    s = ScanSettings().with_overrides(workers=None, external_analyzer="sarif", sarif_path="x.sarif")
    assert s.workers == 1
    assert s.external_analyzer == "sarif"
    with pytest.raises(ConfigError):
        ScanSettings().with_overrides(workers=0)


def test_schema_errors_name_the_field():
    with pytest.raises(ConfigError, match="workers"):
        settings_from_mapping({"workers": 0})
    with pytest.raises(ConfigError, match="sarif_path"):
        settings_from_mapping({"external_analyzer": "sarif"})


def test_source_extensions():
    s = load_settings(environ={})
    assert ".rs" in s.source_extensions
    assert ".py" in s.source_extensions
    s = load_settings(environ={"CRYPTOSCOPE_SOURCE_EXTENSIONS": ".rs, .txt"})
    assert s.source_extensions == [".rs", ".txt"]
    with pytest.raises(ConfigError):
        settings_from_mapping({"source_extensions": ["rs"]})


def test_strict_parse_is_on_by_default():
    assert ScanSettings().strict_parse is True
    assert settings_from_mapping({"strict_parse": "off"}).strict_parse is False
