import tomllib
from pathlib import Path

import pytest

from git_sync_backup.config import (
    Config,
    append_item,
    find_repo_root,
    parse_time,
    validate_repo_path,
    write_default_config,
)
from git_sync_backup.constants import (
    CONFIG_FILENAME,
    DEFAULT_GIT_TIMEOUT,
    DEFAULT_SYNC_INTERVAL,
)
from git_sync_backup.errors import ConfigError, ConfigNotFound, RepoRootNotFound

SAMPLE_CONFIG = """
version = "0.2.0"
sync_interval = "2h"

[git]
remote = "backup"
branch = "trunk"

[aliases]
laptop = "aaaa-1111"

[[item]]
path_in_repo = "dotfiles/.bashrc"
default_source = "~/.bashrc"
is_hardlink = true
ignore_restore = ["laptop"]

[[item]]
path_in_repo = "notes"
[item.sources]
laptop = "/home/me/notes"
"bbbb-2222" = "/srv/notes"
"""


def _write_config(root: Path, text: str) -> Path:
    path = root / CONFIG_FILENAME
    path.write_text(text)
    return path


def test_parse_time() -> None:
    """Verifies human-readable intervals are converted to seconds."""
    assert parse_time("30") == 30
    assert parse_time("45s") == 45
    assert parse_time("5m") == 300
    assert parse_time("2h") == 7200
    assert parse_time("1hr") == 3600
    assert parse_time(900) == 900
    with pytest.raises(ValueError):
        parse_time("soon")
    with pytest.raises(ValueError):
        parse_time(True)


def test_load_full_config(tmp_path: Path) -> None:
    """Verifies every section of a realistic configuration is parsed.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
    """
    _write_config(tmp_path, SAMPLE_CONFIG)

    conf = Config.load(tmp_path)

    assert conf.version == "0.2.0"
    assert conf.sync_interval == 7200
    assert conf.git.remote == "backup"
    assert conf.git.branch == "trunk"
    assert conf.git.timeout == DEFAULT_GIT_TIMEOUT
    assert conf.aliases == {"laptop": "aaaa-1111"}

    bashrc, notes = conf.items
    assert bashrc.path_in_repo == "dotfiles/.bashrc"
    assert bashrc.default_source == "~/.bashrc"
    assert bashrc.is_hardlink is True
    assert bashrc.ignore_restore == frozenset({"laptop"})
    assert bashrc.ignore_collect == frozenset()

    assert notes.is_hardlink is False
    assert notes.default_source is None
    # Alias keys are canonicalized on load.
    assert dict(notes.sources) == {
        "aaaa-1111": "/home/me/notes",
        "bbbb-2222": "/srv/notes",
    }


def test_load_defaults(tmp_path: Path) -> None:
    """Verifies an empty file yields the default settings and no items."""
    _write_config(tmp_path, "")

    conf = Config.load(tmp_path)

    assert conf.sync_interval == DEFAULT_SYNC_INTERVAL
    assert conf.git.remote == "origin"
    assert conf.git.branch == "main"
    assert conf.items == []


def test_load_missing_file(tmp_path: Path) -> None:
    """Verifies a store without a config file raises ConfigNotFound."""
    with pytest.raises(ConfigNotFound):
        Config.load(tmp_path)


def test_load_syntax_error(tmp_path: Path) -> None:
    """Verifies malformed TOML is reported as a ConfigError."""
    _write_config(tmp_path, "[[item]\npath_in_repo = ")

    with pytest.raises(ConfigError, match="syntax error"):
        Config.load(tmp_path)


def test_duplicate_path_in_repo_rejected(tmp_path: Path) -> None:
    """Verifies two items sharing a path_in_repo fail validation."""
    _write_config(
        tmp_path,
        '[[item]]\npath_in_repo = "a"\n[[item]]\npath_in_repo = "./a"\n',
    )

    with pytest.raises(ConfigError, match="Duplicate path_in_repo 'a'"):
        Config.load(tmp_path)


@pytest.mark.parametrize(
    "path_in_repo",
    ["", "/etc/passwd", "../outside", "a/../../b", ".git/config", "C:\\temp\\x"],
)
def test_invalid_path_in_repo(path_in_repo: str) -> None:
    """Verifies paths that escape the store or touch .git are rejected."""
    with pytest.raises(ConfigError):
        validate_repo_path(path_in_repo)


def test_valid_path_in_repo_is_normalized() -> None:
    """Verifies backslashes and redundant segments are normalized."""
    assert validate_repo_path("dotfiles\\vim\\vimrc") == "dotfiles/vim/vimrc"
    assert validate_repo_path("./notes/") == "notes"
    assert validate_repo_path(".gitconfig") == ".gitconfig"


def test_invalid_field_types(tmp_path: Path) -> None:
    """Verifies wrongly typed item fields raise ConfigError."""
    _write_config(tmp_path, '[[item]]\npath_in_repo = "a"\nis_hardlink = "yes"\n')
    with pytest.raises(ConfigError, match="is_hardlink"):
        Config.load(tmp_path)

    _write_config(tmp_path, '[[item]]\npath_in_repo = "a"\nignore_collect = "pc"\n')
    with pytest.raises(ConfigError, match="ignore_collect"):
        Config.load(tmp_path)

    _write_config(tmp_path, '[[item]]\ndefault_source = "~/x"\n')
    with pytest.raises(ConfigError, match="path_in_repo"):
        Config.load(tmp_path)


def test_non_positive_interval_rejected(tmp_path: Path) -> None:
    """Verifies a zero sync interval is rejected."""
    _write_config(tmp_path, "sync_interval = 0\n")

    with pytest.raises(ConfigError, match="sync_interval"):
        Config.load(tmp_path)


def test_unknown_keys_warn(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Verifies unknown keys are reported but do not abort loading.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    _write_config(
        tmp_path,
        'colour = "blue"\n[git]\nbrnch = "x"\n[[item]]\npath_in_repo = "a"\nfoo = 1\n',
    )

    conf = Config.load(tmp_path)

    assert len(conf.items) == 1
    assert "Unknown config keys" in caplog.text
    assert "colour" in caplog.text
    assert "brnch" in caplog.text
    assert "foo" in caplog.text


def test_alias_and_id_for_same_device_warns(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies a source keyed by both an alias and its id is flagged."""
    _write_config(
        tmp_path,
        '[aliases]\npc = "id-1"\n'
        '[[item]]\npath_in_repo = "a"\n'
        '[item.sources]\n"id-1" = "/one"\npc = "/two"\n',
    )

    conf = Config.load(tmp_path)

    assert len(conf.items[0].sources) == 1
    assert "same device 'id-1'" in caplog.text


def test_find_repo_root_walks_up(tmp_path: Path) -> None:
    """Verifies the nearest ancestor holding the config file is found."""
    _write_config(tmp_path, "")
    nested = tmp_path / "a" / "b" / "c"
    nested.mkdir(parents=True)

    assert find_repo_root(nested) == tmp_path.resolve()


def test_find_repo_root_not_found(tmp_path: Path) -> None:
    """Verifies a tree without a config file raises RepoRootNotFound."""
    with pytest.raises(RepoRootNotFound):
        find_repo_root(tmp_path)


def test_write_default_then_append(tmp_path: Path) -> None:
    """Verifies a fresh config accepts new items and stays loadable."""
    path = write_default_config(tmp_path, "origin", "main")
    assert path == tmp_path / CONFIG_FILENAME
    with pytest.raises(ConfigError, match="already exists"):
        write_default_config(tmp_path)

    item = append_item(
        tmp_path,
        {"path_in_repo": "shell/.zshrc", "default_source": "~/.zshrc"},
    )
    assert item.path_in_repo == "shell/.zshrc"

    with pytest.raises(ConfigError, match="exists"):
        append_item(tmp_path, {"path_in_repo": "shell/.zshrc"})

    raw = tomllib.loads(path.read_text())
    assert raw["item"] == [
        {"path_in_repo": "shell/.zshrc", "default_source": "~/.zshrc"}
    ]
    conf = Config.load(tmp_path)
    assert [i.path_in_repo for i in conf.items] == ["shell/.zshrc"]
    assert not list(tmp_path.glob("*.tmp"))


def test_append_item_requires_config(tmp_path: Path) -> None:
    """Verifies appending without a config file raises ConfigNotFound."""
    with pytest.raises(ConfigNotFound):
        append_item(tmp_path, {"path_in_repo": "a"})


def test_append_item_rejects_invalid_path(tmp_path: Path) -> None:
    """Verifies an invalid new item leaves the file untouched."""
    path = write_default_config(tmp_path)
    before = path.read_text()

    with pytest.raises(ConfigError):
        append_item(tmp_path, {"path_in_repo": "../escape"})

    assert path.read_text() == before
