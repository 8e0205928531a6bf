from pathlib import Path

import pytest

from dsym_upload.config import apply_cli_overrides, get_org_and_project, load_config
from dsym_upload.errors import ConfigError


def test_apply_cli_overrides_ignores_nested_none_values() -> None:
    cfg = load_config(None, env={})
    merged = apply_cli_overrides(
        cfg,
        {
            "upload": {"batch_size": None, "allow_zips": None},
            "runtime": {"log_level": None},
        },
    )
    assert merged["upload"]["batch_size"] == 12
    assert merged["upload"]["allow_zips"] is True
    assert merged["runtime"]["log_level"] == "INFO"


def test_yaml_file_then_environment_then_cli(tmp_path: Path) -> None:
    path = tmp_path / "dsym-upload.yaml"
    path.write_text(
        "defaults:\n  org: file-org\n  project: file-project\nupload:\n  batch_size: 4\n",
        encoding="utf-8",
    )
    cfg = load_config(path, env={"SENTRY_PROJECT": "env-project"})
    assert cfg["defaults"]["org"] == "file-org"
    assert cfg["defaults"]["project"] == "env-project"
    assert cfg["upload"]["batch_size"] == 4
    assert cfg["server"]["timeout_sec"] == 120

    apply_cli_overrides(cfg, {"defaults": {"org": "cli-org", "project": None}})
    assert get_org_and_project(cfg) == ("cli-org", "env-project")


def test_missing_config_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml", env={})


def test_config_root_must_be_a_mapping(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path, env={})


def test_org_and_project_are_required() -> None:
    cfg = load_config(None, env={"SENTRY_ORG": "org"})
    with pytest.raises(ConfigError, match="project"):
        get_org_and_project(cfg)
