"""Tests for the hierarchical YAML config loader."""

from pathlib import Path

import pytest

from gist_shard_sync.config_loader import (
    CONFIG_ENV_VAR,
    PROJECT_DIR_NAME,
    _interpolate_tree,
    discover_config_files,
    ensure_config,
    interpolate_env_vars,
    load_hierarchical_config,
    load_yaml_file,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Empty working directory and home, no config env var."""
    work = tmp_path / "work"
    home = tmp_path / "home"
    work.mkdir()
    home.mkdir()
    monkeypatch.chdir(work)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    return work, home


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestInterpolation:
    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("GS_TOKEN", "abc")
        assert interpolate_env_vars("token ${GS_TOKEN}") == "token abc"

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("GS_MISSING", raising=False)
        assert interpolate_env_vars("${GS_MISSING:-fallback}") == "fallback"

    def test_default_used_when_empty(self, monkeypatch):
        monkeypatch.setenv("GS_EMPTY", "")
        assert interpolate_env_vars("${GS_EMPTY:-x}") == "x"

    def test_unset_without_default_is_empty(self, monkeypatch):
        monkeypatch.delenv("GS_MISSING", raising=False)
        assert interpolate_env_vars("a${GS_MISSING}b") == "ab"

    def test_unclosed_brace_kept(self):
        assert interpolate_env_vars("${OPEN") == "${OPEN"

    def test_tree(self, monkeypatch):
        monkeypatch.setenv("GS_DIR", "/data")
        tree = {"storage": {"data_dir": "${GS_DIR}", "n": 3}, "list": ["${GS_DIR}"]}
        assert _interpolate_tree(tree) == {
            "storage": {"data_dir": "/data", "n": 3},
            "list": ["/data"],
        }


class TestLoadYamlFile:
    def test_include(self, tmp_path):
        _write(tmp_path / "github.yml", "token: inc\n")
        main = _write(tmp_path / "config.yml", "github: !include github.yml\n")
        assert load_yaml_file(main) == {"github": {"token": "inc"}}

    def test_include_cycle(self, tmp_path):
        _write(tmp_path / "a.yml", "x: !include b.yml\n")
        _write(tmp_path / "b.yml", "y: !include a.yml\n")
        with pytest.raises(ValueError, match="Circular include"):
            load_yaml_file(tmp_path / "a.yml")

    def test_missing_include(self, tmp_path):
        main = _write(tmp_path / "config.yml", "x: !include nope.yml\n")
        with pytest.raises(FileNotFoundError, match="Include file not found"):
            load_yaml_file(main)

    def test_unsafe_tags_rejected(self, tmp_path):
        import yaml

        main = _write(tmp_path / "config.yml", "x: !!python/object:os.system {}\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml_file(main)


class TestDiscovery:
    def test_nothing_found(self, isolated):
        assert discover_config_files() == []

    def test_order(self, isolated, tmp_path, monkeypatch):
        work, home = isolated
        explicit = _write(tmp_path / "explicit.yml", "{}")
        project = _write(work / PROJECT_DIR_NAME / "config.yml", "{}")
        user = _write(home / ".config" / "gist_sync" / "config.yml", "{}")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(explicit))

        found = [p.resolve() for p in discover_config_files()]
        assert found == [explicit.resolve(), project.resolve(), user.resolve()]

    def test_yaml_extension(self, isolated):
        work, _ = isolated
        path = _write(work / PROJECT_DIR_NAME / "config.yaml", "{}")
        assert [p.resolve() for p in discover_config_files()] == [path.resolve()]


class TestHierarchicalConfig:
    def test_zero_config(self, isolated):
        assert load_hierarchical_config() == {}

    def test_project_wins_per_section(self, isolated, monkeypatch):
        work, home = isolated
        monkeypatch.setenv("GS_TOKEN", "from-env")
        _write(
            home / ".config" / "gist_sync" / "config.yml",
            "github:\n  token: user\n  timeout: 10\nstorage:\n  data_dir: /user\n",
        )
        _write(work / PROJECT_DIR_NAME / "config.yml", "github:\n  token: ${GS_TOKEN}\n")

        merged = load_hierarchical_config()

        # sections are replaced wholesale, not deep-merged
        assert merged["github"] == {"token": "from-env"}
        assert merged["storage"] == {"data_dir": "/user"}

    def test_non_mapping_root_skipped(self, isolated, caplog):
        work, _ = isolated
        _write(work / PROJECT_DIR_NAME / "config.yml", "- a\n- b\n")
        assert load_hierarchical_config() == {}
        assert "instead of a mapping" in caplog.text


class TestEnsureConfig:
    def test_creates_starter(self, isolated):
        work, _ = isolated
        path = ensure_config()
        assert path.resolve() == (work / PROJECT_DIR_NAME / "config.yml").resolve()
        assert "gist-shard-sync configuration" in path.read_text()
        # every line is commented, so the starter loads as empty
        assert load_hierarchical_config() == {}

    def test_keeps_existing(self, isolated):
        work, _ = isolated
        existing = _write(work / PROJECT_DIR_NAME / "config.yml", "github: {}\n")
        assert ensure_config().resolve() == existing.resolve()
        assert existing.read_text() == "github: {}\n"
