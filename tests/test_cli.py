"""
CLI tests for cipherreg

These tests drive cipherreg.cli.main() end-to-end inside a temporary
project directory.
"""

import pytest

from cipherreg.cli import create_parser, main
from cipherreg.storage import RegistryStorage


def run(*args):
    """Run a CLI command, returning its exit code (0 when it returns normally)."""
    try:
        main(list(args))
    except SystemExit as e:
        return e.code
    return 0


@pytest.fixture
def project(temp_project_dir, capsys):
    """Initialized project with keys for admin, alice and bob"""
    assert run("init", "--admin", "admin") == 0
    assert run("keys", "generate", "alice") == 0
    assert run("keys", "generate", "bob") == 0
    capsys.readouterr()
    return temp_project_dir


class TestParser:
    """Tests for argument parsing"""

    def test_no_command_prints_help(self, capsys):
        assert run() == 0
        assert "usage" in capsys.readouterr().out

    def test_register_requires_actor(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["register", "alice", "30"])


class TestInitCommand:
    """Tests for cipherreg init"""

    def test_init(self, temp_project_dir, capsys):
        assert run("init", "--admin", "admin") == 0
        out = capsys.readouterr().out
        assert "Generated identity key: admin" in out
        assert "Initialized cipherreg registry" in out
        assert (temp_project_dir / ".cipherreg" / "config.json").is_file()

    def test_init_fails_if_exists(self, project, capsys):
        assert run("init", "--admin", "admin") == 1
        assert "Error" in capsys.readouterr().out

    def test_init_force(self, project, capsys):
        assert run("init", "--admin", "admin", "--force") == 0
        out = capsys.readouterr().out
        assert "Generated identity key" not in out

    def test_command_without_project(self, temp_project_dir, capsys):
        assert run("show") == 1
        assert "cipherreg init" in capsys.readouterr().out


class TestKeysCommand:
    """Tests for cipherreg keys"""

    def test_list(self, project, capsys):
        assert run("keys", "list") == 0
        out = capsys.readouterr().out
        assert "admin:" in out
        assert "alice:" in out

    def test_export(self, project, capsys):
        assert run("keys", "export", "alice") == 0
        assert "BEGIN PUBLIC KEY" in capsys.readouterr().out

    def test_generate_requires_name(self, project, capsys):
        assert run("keys", "generate") == 1
        assert "Error" in capsys.readouterr().out


class TestRecordCommands:
    """Tests for register, rename, update and show"""

    def test_register_and_show(self, project, capsys):
        assert run("register", "--as", "alice", "alice", "30") == 0
        assert "Registered alice" in capsys.readouterr().out

        assert run("show", "alice") == 0
        out = capsys.readouterr().out
        assert "registered" in out
        assert "Name: alice" in out
        assert "owner_and_registry" in out

    def test_register_plain(self, project, capsys):
        assert run("register", "--as", "alice", "alice", "30", "--plain") == 0
        assert RegistryStorage(project).load_registry().is_registered(
            RegistryStorage(project).key_manager.address_of("alice")
        )

    def test_register_out_of_range(self, project, capsys):
        assert run("register", "--as", "alice", "alice", "256", "--plain") == 1
        assert "Error" in capsys.readouterr().out

    def test_rename(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        assert run("rename", "--as", "alice", "Alice") == 0
        capsys.readouterr()
        run("show", "alice")
        assert "Name: Alice" in capsys.readouterr().out

    def test_rename_unregistered(self, project, capsys):
        assert run("rename", "--as", "bob", "Bob") == 1
        assert "not registered" in capsys.readouterr().out

    def test_update_and_decrypt(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        assert run("update", "--as", "alice", "31") == 0
        capsys.readouterr()

        assert run("decrypt", "--as", "alice") == 0
        assert capsys.readouterr().out.strip().endswith(": 31")

    def test_unknown_key(self, project, capsys):
        assert run("register", "--as", "mallory", "m", "1") == 1
        assert "Error" in capsys.readouterr().out


class TestDecryptCommand:
    """Tests for cipherreg decrypt"""

    def test_owner(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        capsys.readouterr()
        assert run("decrypt", "--as", "alice") == 0
        assert "alice" in capsys.readouterr().out

    def test_admin(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        capsys.readouterr()
        assert run("decrypt", "--as", "admin", "--target", "alice") == 0
        assert capsys.readouterr().out.strip().endswith(": 30")

    def test_stranger(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        capsys.readouterr()
        assert run("decrypt", "--as", "bob", "--target", "alice") == 1
        assert "may not decrypt" in capsys.readouterr().out

    def test_public_after_disclose(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        capsys.readouterr()
        assert run("decrypt", "--public", "--target", "alice") == 1
        capsys.readouterr()

        assert run("disclose", "--as", "alice") == 0
        assert run("decrypt", "--public", "--target", "alice") == 0
        assert capsys.readouterr().out.strip().endswith(": 30")

    def test_requires_actor(self, project, capsys):
        assert run("decrypt") == 1
        assert "--as" in capsys.readouterr().out


class TestAdminCommands:
    """Tests for disclose --target, clear and transfer-admin"""

    def test_disclose_for(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        assert run("disclose", "--as", "bob", "--target", "alice") == 1
        assert run("disclose", "--as", "admin", "--target", "alice") == 0
        capsys.readouterr()
        run("show", "alice")
        assert "public" in capsys.readouterr().out

    def test_clear(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        assert run("clear", "--as", "alice", "alice") == 1
        assert run("clear", "--as", "admin", "alice") == 0
        capsys.readouterr()
        run("show", "alice")
        assert "unregistered" in capsys.readouterr().out

    def test_transfer_admin(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        assert run("transfer-admin", "--as", "admin", "bob") == 0
        assert run("clear", "--as", "admin", "alice") == 1
        assert run("clear", "--as", "bob", "alice") == 0


class TestEventsCommand:
    """Tests for cipherreg events"""

    def test_empty(self, project, capsys):
        assert run("events") == 0
        assert "No events." in capsys.readouterr().out

    def test_listing_and_verify(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        run("disclose", "--as", "alice")
        capsys.readouterr()

        assert run("events") == 0
        out = capsys.readouterr().out
        assert "#0 Registered" in out
        assert "#1 Disclosed" in out

        assert run("events", "--verify") == 0
        assert "Event log valid (2 entries)" in capsys.readouterr().out

    def test_verify_detects_tampering(self, project, capsys):
        run("register", "--as", "alice", "alice", "30")
        path = project / ".cipherreg" / "events.jsonl"
        path.write_text(path.read_text().replace('"alice"', '"mallory"'))
        capsys.readouterr()

        assert run("events", "--verify") == 1
        assert "Event log invalid" in capsys.readouterr().out
