"""Unit tests for ~/.ssh/config management."""

from catapulta.provisioning.ssh_config import (
    format_host_entry,
    remove_ssh_config_entry,
    remove_ssh_host_entry,
    setup_ssh_config,
)

CONFIG = """Host github.com
    User git

Host app.example.com
    HostName 1.2.3.4
    User root

Host other
    HostName 5.6.7.8
"""


def test_remove_host_entry():
    result = remove_ssh_host_entry(CONFIG, "app.example.com")
    assert "app.example.com" not in result
    assert "1.2.3.4" not in result
    assert "Host github.com" in result
    assert "Host other\n    HostName 5.6.7.8\n" in result
    assert "\n\n\n" not in result


def test_remove_missing_entry_is_noop():
    assert remove_ssh_host_entry(CONFIG, "missing") == CONFIG


def test_remove_from_empty():
    assert remove_ssh_host_entry("", "x") == ""


def test_format_host_entry():
    entry = format_host_entry("app", "1.2.3.4", "root", "~/.ssh/id_ed25519")
    assert entry.splitlines() == [
        "Host app",
        "    HostName 1.2.3.4",
        "    User root",
        "    IdentityFile ~/.ssh/id_ed25519",
        "    StrictHostKeyChecking no",
    ]


def test_setup_creates_file(tmp_path):
    path = tmp_path / "ssh" / "config"
    setup_ssh_config("app", "1.2.3.4", "root", None, str(path))
    assert path.read_text().startswith("Host app\n    HostName 1.2.3.4\n")


def test_setup_replaces_existing_entry(tmp_path):
    path = tmp_path / "config"
    path.write_text(CONFIG)
    setup_ssh_config("app.example.com", "9.9.9.9", "root", None, str(path))
    content = path.read_text()
    assert content.count("Host app.example.com") == 1
    assert "9.9.9.9" in content
    assert "1.2.3.4" not in content
    assert "Host github.com" in content


def test_remove_config_entry(tmp_path):
    path = tmp_path / "config"
    path.write_text(CONFIG)
    remove_ssh_config_entry("other", str(path))
    assert "Host other" not in path.read_text()


def test_remove_config_entry_missing_file(tmp_path):
    remove_ssh_config_entry("app", str(tmp_path / "nope"))
    assert not (tmp_path / "nope").exists()
