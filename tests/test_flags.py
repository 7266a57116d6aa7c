"""Tests for the persisted auth flags."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import pytest

from fleetmaster.auth.flags import (
    PENDING_OTP_EMAIL_KEY,
    PENDING_OTP_KEY,
    RESET_FLOW_KEY,
    AuthStateFlags,
    first_login_key,
)
from fleetmaster.auth.local_store import MemoryLocalStore
from fleetmaster.auth.types import PendingOTP, ResetFlowState
from fleetmaster.exceptions import CorruptLocalState


@pytest.fixture()
def store() -> MemoryLocalStore:
    return MemoryLocalStore()


@pytest.fixture()
def flags(store: MemoryLocalStore) -> AuthStateFlags:
    return AuthStateFlags(store)


class TestPendingOtp:
    """Tests for the pending verification marker."""

    @pytest.mark.asyncio
    async def test_absent_by_default(self, flags: AuthStateFlags):
        assert await flags.pending_otp() == PendingOTP(flag=False, email=None)

    @pytest.mark.asyncio
    async def test_set_and_clear(self, flags: AuthStateFlags, store: MemoryLocalStore):
        await flags.set_pending_otp("driver@fleet.io")
        assert await store.get(PENDING_OTP_KEY) is True
        assert await store.get(PENDING_OTP_EMAIL_KEY) == "driver@fleet.io"

        await flags.clear_pending_otp()
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_flag_without_email_is_corrupt(self, store: MemoryLocalStore):
        await store.set(PENDING_OTP_KEY, True)
        flags = AuthStateFlags(store)

        assert (await flags.pending_otp()).is_corrupt is True
        with pytest.raises(CorruptLocalState):
            await flags.checked_pending_otp()

    @pytest.mark.asyncio
    async def test_email_without_flag_is_not_pending(self, store: MemoryLocalStore):
        await store.set(PENDING_OTP_EMAIL_KEY, "driver@fleet.io")
        pending = await AuthStateFlags(store).checked_pending_otp()
        assert pending.flag is False


class TestResetFlow:
    """Tests for the password-reset marker."""

    @pytest.mark.asyncio
    async def test_round_trip(self, flags: AuthStateFlags, store: MemoryLocalStore):
        await flags.set_reset_flow("driver@fleet.io")

        assert await store.get(RESET_FLOW_KEY) == {"active": True, "email": "driver@fleet.io"}
        assert await flags.reset_flow() == ResetFlowState(active=True, email="driver@fleet.io")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "blob",
        ["garbage", {"active": "yes"}, {"email": 42}, {}],
    )
    async def test_malformed_blob_reads_inactive(self, store: MemoryLocalStore, blob):
        await store.set(RESET_FLOW_KEY, blob)
        state = await AuthStateFlags(store).reset_flow()
        assert state.active is False

    @pytest.mark.asyncio
    async def test_clear_auth_state(self, flags: AuthStateFlags, store: MemoryLocalStore):
        await flags.set_pending_otp("driver@fleet.io")
        await flags.set_reset_flow("driver@fleet.io")
        await flags.record_first_login_completed("user-1")

        await flags.clear_auth_state()

        assert await store.keys() == [first_login_key("user-1")]


class TestFirstLoginAndLifecycle:
    """Tests for per-user and per-install markers."""

    @pytest.mark.asyncio
    async def test_first_login_is_per_user(self, flags: AuthStateFlags):
        await flags.record_first_login_completed("user-1")

        assert await flags.first_login_completed("user-1") is True
        assert await flags.first_login_completed("user-2") is False

    def test_first_login_key(self):
        assert first_login_key("abc") == "firstLoginCompleted_abc"

    @pytest.mark.asyncio
    async def test_lifecycle_markers(self, flags: AuthStateFlags):
        assert await flags.installed_version() is None
        assert await flags.previously_launched() is False

        await flags.record_installed_version("1.2.0")
        await flags.record_launched()

        assert await flags.installed_version() == "1.2.0"
        assert await flags.previously_launched() is True


class TestResetFlowState:
    """Tests for ResetFlowState encoding."""

    def test_to_dict_without_email(self):
        assert ResetFlowState().to_dict() == {"active": False, "email": ""}

    def test_from_dict_empty_email(self):
        assert ResetFlowState.from_dict({"active": True, "email": ""}).email is None
