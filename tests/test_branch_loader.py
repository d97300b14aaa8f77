import yaml

from core.branch_loader import BranchLoader, merge_defaults, validate_branch_settings


def make_branch(root, name):
    folder = root / name
    folder.mkdir()
    (folder / "__init__.py").write_text("")
    return folder


def test_discovers_branch_packages_only(tmp_path):
    make_branch(tmp_path, "tickets")
    make_branch(tmp_path, "_private")
    (tmp_path / "notes").mkdir()

    loader = BranchLoader(tmp_path)

    assert loader.discover_branches() == ["tickets"]
    assert loader.get_load_path("tickets") == "branches.tickets"
    assert loader.get_load_path("missing") is None


def test_config_is_generated_from_branch_defaults(tmp_path):
    make_branch(tmp_path, "tickets")
    loader = BranchLoader(tmp_path)

    config = loader.load_config("tickets")

    written = yaml.safe_load((tmp_path / "tickets" / "config.yml").read_text(encoding="utf-8"))
    assert written == config
    assert config["enabled"] is True
    assert config["settings"]["staff_role_ids"] == []


def test_unknown_branch_gets_a_bare_config(tmp_path):
    make_branch(tmp_path, "not_a_real_branch")
    config = BranchLoader(tmp_path).load_config("not_a_real_branch")
    assert config == {"enabled": True, "version": "1.0.0", "settings": {}}


def test_existing_config_keeps_values_and_gains_new_defaults(tmp_path):
    folder = make_branch(tmp_path, "tickets")
    (folder / "config.yml").write_text(yaml.safe_dump({
        "enabled": False,
        "settings": {"staff_role_ids": [123456789012345678]},
    }))
    loader = BranchLoader(tmp_path)

    config = loader.load_config("tickets")

    assert config["enabled"] is False
    assert config["settings"]["staff_role_ids"] == [123456789012345678]
    assert config["settings"]["dm_status_updates"] is True
    assert "ui" in yaml.safe_load((folder / "config.yml").read_text(encoding="utf-8"))["settings"]

    [metadata] = loader.list_branches()
    assert metadata.name == "tickets"
    assert metadata.has_config
    assert not metadata.enabled


def test_merge_defaults_is_recursive_and_does_not_mutate():
    defaults = {"a": 1, "nested": {"b": 2, "c": 3}}
    config = {"nested": {"b": 20}}

    merged = merge_defaults(config, defaults)

    assert merged == {"a": 1, "nested": {"b": 20, "c": 3}}
    assert config == {"nested": {"b": 20}}


def test_validate_branch_settings():
    assert validate_branch_settings("x", {"review_channel_id": 0, "reviewer_role_ids": [123456789012345678]})
    assert not validate_branch_settings("x", {"review_channel_id": "abc"})
    assert not validate_branch_settings("x", {"staff_role_ids": ["abc"]})
    assert not validate_branch_settings("x", {"department_roles": {"police": -5}})
