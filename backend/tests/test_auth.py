"""
Tests for authentication: password hashing, JWT, failed-login lockout
and the account service login flow.
"""
import pytest
from unittest.mock import MagicMock


class TestPasswords:

    def test_hash_and_verify(self):
        from cme_tracker.auth import hash_password, verify_password

        hashed = hash_password("matkhau123")

        assert hashed != "matkhau123"
        assert verify_password("matkhau123", hashed) is True
        assert verify_password("wrong", hashed) is False

    def test_plaintext_stored_value_never_matches(self):
        from cme_tracker.auth import verify_password

        assert verify_password("matkhau123", "matkhau123") is False
        assert verify_password("anything", "") is False


class TestTokens:

    def test_round_trip(self):
        from cme_tracker.auth import create_access_token, decode_token

        payload = decode_token(create_access_token("id-1", "lan", "reporter"))

        assert payload["sub"] == "id-1"
        assert payload["role"] == "reporter"

    def test_tampered_token_rejected(self):
        from cme_tracker.auth import create_access_token, decode_token

        token = create_access_token("id-1", "lan")

        assert decode_token(token[:-2] + "xx") is None
        assert decode_token("not-a-jwt") is None


class TestLockoutPolicy:

    def test_locks_at_threshold(self):
        from cme_tracker.auth import LockoutPolicy

        user = MagicMock()
        user.failed_login_attempts = 0
        user.status = "active"
        policy = LockoutPolicy(max_attempts=3)

        assert policy.record_failure(user) == 2
        assert policy.record_failure(user) == 1
        assert user.status == "active"
        assert policy.record_failure(user) == 0
        assert user.status == "locked"

    def test_reset(self):
        from cme_tracker.auth import LockoutPolicy

        user = MagicMock()
        user.failed_login_attempts = 5
        user.status = "locked"
        LockoutPolicy().reset(user)

        assert (user.failed_login_attempts, user.status) == (0, "active")


class TestAuthenticate:
    """AccountService.authenticate against a real session."""

    def test_success_resets_counter(self, db, make_user):
        from cme_tracker.services.accounts import AccountService

        user = make_user("lan", password="secret123")
        user.failed_login_attempts = 2
        db.commit()

        assert AccountService(db).authenticate("lan", "secret123").id == user.id
        assert user.failed_login_attempts == 0

    def test_unknown_user(self, db):
        from cme_tracker.services.accounts import AccountService, AuthenticationError

        with pytest.raises(AuthenticationError) as exc_info:
            AccountService(db).authenticate("ghost", "x")
        assert exc_info.value.remaining_attempts is None

    def test_five_failures_lock_the_account(self, db, make_user):
        from cme_tracker.auth import LockoutPolicy
        from cme_tracker.services.accounts import AccountService, AuthenticationError, AccountLockedError

        user = make_user("lan", password="secret123")
        service = AccountService(db, policy=LockoutPolicy(max_attempts=5))

        for expected_left in (4, 3, 2, 1):
            with pytest.raises(AuthenticationError) as exc_info:
                service.authenticate("lan", "wrong")
            assert exc_info.value.remaining_attempts == expected_left
            assert f"Bạn còn {expected_left} lần thử." in str(exc_info.value)

        with pytest.raises(AccountLockedError):
            service.authenticate("lan", "wrong")
        assert user.status == "locked"

        # Correct password no longer helps
        with pytest.raises(AccountLockedError):
            service.authenticate("lan", "secret123")

    def test_disabled_account(self, db, make_user):
        from cme_tracker.services.accounts import AccountService, AccountDisabledError

        make_user("lan", status="disabled")

        with pytest.raises(AccountDisabledError):
            AccountService(db).authenticate("lan", "secret123")

    def test_reset_lock_allows_login(self, db, make_user):
        from cme_tracker.services.accounts import AccountService

        admin = make_user("admin", role="admin")
        user = make_user("lan", status="locked")
        user.failed_login_attempts = 5
        db.commit()

        service = AccountService(db)
        service.reset_lock(admin, user)

        assert service.authenticate("lan", "secret123").status == "active"

    def test_locked_user_cannot_be_reactivated_by_edit(self, db, make_user):
        from cme_tracker.services.accounts import AccountService

        admin = make_user("admin", role="admin")
        user = make_user("lan", status="locked")

        AccountService(db).update_user(admin, user, {"status": "active", "name": "Lan"})

        assert user.status == "locked"
        assert user.name == "Lan"


class TestPasswordChange:

    def test_rules(self, db, make_user):
        from cme_tracker.auth import verify_password
        from cme_tracker.services.accounts import AccountService, PasswordChangeError

        user = make_user("lan", password="secret123")
        service = AccountService(db)

        with pytest.raises(PasswordChangeError):
            service.change_password(user, "secret123", "abc", "abc")
        with pytest.raises(PasswordChangeError):
            service.change_password(user, "secret123", "newpass1", "newpass2")
        with pytest.raises(PasswordChangeError):
            service.change_password(user, "wrong", "newpass1", "newpass1")
        with pytest.raises(PasswordChangeError):
            service.change_password(user, "secret123", "secret123", "secret123")

        service.change_password(user, "secret123", "newpass1", "newpass1")
        assert verify_password("newpass1", user.password_hash)
