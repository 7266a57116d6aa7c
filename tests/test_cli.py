"""Tests for the command-line interface."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING

import pytest

from fleetmaster.auth.flags import first_login_key
from fleetmaster.auth.types import AuthStage
from fleetmaster.cli import main, run_login, run_logout, run_status
from fleetmaster.exceptions import AuthenticationFailed
from tests.constants import CODE, EMAIL, NEW_PASSWORD, PASSWORD, USER_ID


if TYPE_CHECKING:
    from pathlib import Path
    from unittest.mock import MagicMock

    from fleetmaster.auth.local_store import MemoryLocalStore
    from fleetmaster.auth.orchestrator import AuthOrchestrator


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def _answers(*values: str):
    """Prompt stand-in returning ``values`` in order."""
    it = iter(values)
    return lambda _prompt: next(it)


# ── Configuration commands ───────────────────────────────────────────


class TestConfigCommand:
    """Tests for `fleetmaster config`."""

    def test_show_is_default(self, isolated_env: Path, capsys: pytest.CaptureFixture[str]):
        assert main(["config"]) == 0
        assert "Fleet Master Configuration" in capsys.readouterr().out

    def test_toml(self, isolated_env: Path, capsys: pytest.CaptureFixture[str]):
        assert main(["config", "--toml"]) == 0
        out = capsys.readouterr().out
        assert "[provider]" in out
        assert "[store]" in out

    def test_env(self, isolated_env: Path, capsys: pytest.CaptureFixture[str]):
        assert main(["config", "--env"]) == 0
        assert "FLEETMASTER_PROVIDER__URL" in capsys.readouterr().out

    def test_output_file(self, isolated_env: Path):
        assert main(["config", "--toml", "--output", "out.toml"]) == 0
        assert "[auth]" in (isolated_env / "out.toml").read_text(encoding="utf-8")

    def test_sources(
        self,
        isolated_env: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ):
        monkeypatch.setenv("FLEETMASTER_AUTH__APP_VERSION", "1.0.0")
        assert main(["config", "--sources"]) == 0
        out = capsys.readouterr().out
        assert "Configuration Sources" in out
        assert "FLEETMASTER_AUTH__APP_VERSION" in out

    def test_options_are_exclusive(self, isolated_env: Path):
        with pytest.raises(SystemExit):
            main(["config", "--toml", "--env"])


class TestInitCommand:
    """Tests for `fleetmaster init`."""

    def test_creates_file(self, isolated_env: Path):
        assert main(["init"]) == 0
        content = (isolated_env / "fleetmaster.toml").read_text(encoding="utf-8")
        assert content.startswith("# Fleet Master Configuration File")
        assert "FLEETMASTER_PROVIDER__URL" in content
        assert "[auth]" in content

    def test_refuses_to_overwrite(self, isolated_env: Path, capsys: pytest.CaptureFixture[str]):
        (isolated_env / "fleetmaster.toml").write_text("# mine\n", encoding="utf-8")

        assert main(["init"]) == 1
        assert "already exists" in capsys.readouterr().err
        assert (isolated_env / "fleetmaster.toml").read_text(encoding="utf-8") == "# mine\n"

    def test_force_and_custom_path(self, isolated_env: Path):
        (isolated_env / "conf.toml").write_text("# mine\n", encoding="utf-8")
        assert main(["init", "--force", "--path", "conf.toml"]) == 0
        assert "[provider]" in (isolated_env / "conf.toml").read_text(encoding="utf-8")


class TestMain:
    """Tests for dispatch and session commands."""

    def test_no_command_prints_help(self, isolated_env: Path, capsys: pytest.CaptureFixture[str]):
        assert main([]) == 0
        assert "usage: fleetmaster" in capsys.readouterr().out

    def test_session_command_needs_provider(
        self, isolated_env: Path, capsys: pytest.CaptureFixture[str]
    ):
        assert main(["status"]) == 1
        assert "requires url and anon_key" in capsys.readouterr().err


# ── Session runners ──────────────────────────────────────────────────


class TestRunners:
    """Tests for the status, login and logout runners."""

    def test_status_signed_out(
        self, orchestrator: AuthOrchestrator, capsys: pytest.CaptureFixture[str]
    ):
        assert _run(run_status(orchestrator)) == 0
        out = capsys.readouterr().out
        assert "Stage: unauthenticated" in out
        assert "Signed in: no" in out

    def test_first_login_flow(
        self,
        orchestrator: AuthOrchestrator,
        mock_provider: MagicMock,
        store: MemoryLocalStore,
        capsys: pytest.CaptureFixture[str],
    ):
        code = _run(
            run_login(
                orchestrator,
                prompt=_answers(EMAIL, CODE),
                secret_prompt=_answers(PASSWORD, NEW_PASSWORD, NEW_PASSWORD),
            )
        )

        assert code == 0
        assert orchestrator.stage is AuthStage.AUTHENTICATED
        mock_provider.update_password.assert_awaited_once_with(NEW_PASSWORD)
        assert _run(store.get(first_login_key(USER_ID))) is True
        out = capsys.readouterr().out
        assert "Choose a new password." in out
        assert "Signed in." in out

    def test_blank_code_requests_resend(
        self, orchestrator: AuthOrchestrator, mock_provider: MagicMock, store: MemoryLocalStore
    ):
        _run(store.set(first_login_key(USER_ID), True))

        code = _run(
            run_login(
                orchestrator,
                prompt=_answers(EMAIL, "", CODE),
                secret_prompt=_answers(PASSWORD),
            )
        )

        assert code == 0
        # still cooling down, so the blank entry does not send another code
        assert mock_provider.send_one_time_code.await_count == 1
        assert orchestrator.stage is AuthStage.AUTHENTICATED

    def test_gives_up_after_rejected_passwords(
        self,
        orchestrator: AuthOrchestrator,
        mock_provider: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ):
        mock_provider.sign_in_with_password.side_effect = AuthenticationFailed(
            "Invalid credentials"
        )

        code = _run(
            run_login(
                orchestrator,
                prompt=_answers(EMAIL, EMAIL, EMAIL),
                secret_prompt=_answers("a", "b", "c"),
            )
        )

        assert code == 1
        assert mock_provider.sign_in_with_password.await_count == 3
        assert "Login failed: Invalid credentials" in capsys.readouterr().err

    def test_already_signed_in(
        self,
        orchestrator: AuthOrchestrator,
        mock_provider: MagicMock,
        store: MemoryLocalStore,
        provider_session,
        capsys: pytest.CaptureFixture[str],
    ):
        _run(store.set("appInstalledVersion", "1.0.0"))
        _run(store.set("appPreviouslyLaunched", True))
        mock_provider.get_current_session.return_value = provider_session

        assert _run(run_login(orchestrator, prompt=_answers(), secret_prompt=_answers())) == 0
        assert "Already signed in." in capsys.readouterr().out

    def test_logout(
        self,
        orchestrator: AuthOrchestrator,
        mock_provider: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ):
        assert _run(run_logout(orchestrator)) == 0
        mock_provider.sign_out.assert_awaited_once()
        assert orchestrator.stage is AuthStage.SIGNED_OUT
        assert "Signed out." in capsys.readouterr().out
