"""
Tests for API key issuance, authentication and authorization.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from filevault.exceptions import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from filevault.models import ApiKey, Permission, utcnow
from filevault.utils.api_keys import (
    authenticate,
    authorize,
    create_api_key,
    create_organization,
    generate_api_key,
    has_permission,
    hash_api_key,
    list_api_keys,
    record_key_usage,
    revoke_api_key,
    serialize_api_key,
)


@pytest.mark.unit
class TestKeyGeneration:
    def test_format(self):
        raw, prefix, hashed = generate_api_key()

        assert raw.startswith("fv_")
        assert len(raw) == 3 + 64
        assert prefix == raw[:11]
        assert hashed == hash_api_key(raw)
        assert len(hashed) == 64

    def test_keys_are_unique(self):
        assert len({generate_api_key()[0] for _ in range(20)}) == 20


@pytest.mark.unit
class TestOrganizations:
    def test_create_organization_issues_admin_key(self, db_session):
        org, issued = create_organization(db_session, "Acme")

        assert org.name == "Acme"
        assert issued.name == "Default Admin Key"
        assert set(issued.permissions) == {"upload", "read", "delete", "admin"}

    def test_name_too_short(self, db_session):
        with pytest.raises(ValidationError):
            create_organization(db_session, " a ")


@pytest.mark.unit
class TestKeyLifecycle:
    def test_raw_key_is_never_stored(self, db_session, organization):
        issued = create_api_key(db_session, organization[0].id, "ci", ["upload"])

        stored = db_session.get(ApiKey, issued.id)
        assert stored.hashed_key == hash_api_key(issued.key)
        assert issued.key not in (stored.hashed_key, stored.key_prefix)
        assert "key" not in serialize_api_key(stored)
        assert "hashed_key" not in serialize_api_key(stored)

    def test_default_permission_is_read(self, db_session, organization):
        issued = create_api_key(db_session, organization[0].id, "viewer", [])
        assert issued.permissions == ["read"]

    def test_unknown_permission_rejected(self, db_session, organization):
        with pytest.raises(ValidationError):
            create_api_key(db_session, organization[0].id, "bad", ["read", "superuser"])

    def test_past_expiry_rejected(self, db_session, organization):
        with pytest.raises(ValidationError):
            create_api_key(db_session, organization[0].id, "old", ["read"], expires_at=utcnow() - timedelta(days=1))

    def test_authenticate_roundtrip(self, db_session, organization):
        org, _ = organization
        issued = create_api_key(db_session, org.id, "ci", ["upload", "read"])

        ctx = authenticate(db_session, issued.key)

        assert ctx.organization_id == org.id
        assert ctx.api_key_id == issued.id
        assert ctx.permissions == frozenset({"upload", "read"})
        assert ctx.organization_name == "Acme"
        db_session.expire_all()
        assert db_session.get(ApiKey, issued.id).last_used_at is not None

    def test_expired_key_rejected(self, db_session, organization):
        issued = create_api_key(db_session, organization[0].id, "short", ["read"], expires_at=utcnow() + timedelta(hours=1))
        db_session.query(ApiKey).filter_by(id=issued.id).update({ApiKey.expires_at: utcnow() - timedelta(seconds=1)})
        db_session.commit()

        with pytest.raises(AuthenticationError):
            authenticate(db_session, issued.key)

    def test_revoked_key_rejected(self, db_session, organization):
        org, admin = organization
        issued = create_api_key(db_session, org.id, "temp", ["read"])

        revoke_api_key(db_session, org.id, issued.id, current_key_id=admin.id)

        with pytest.raises(AuthenticationError):
            authenticate(db_session, issued.key)
        assert [k.id for k in list_api_keys(db_session, org.id)] == [admin.id]

    def test_cannot_revoke_key_in_use(self, db_session, organization):
        org, admin = organization
        with pytest.raises(ValidationError):
            revoke_api_key(db_session, org.id, admin.id, current_key_id=admin.id)

    def test_cannot_revoke_other_tenants_key(self, db_session, organization, other_organization):
        _other_org, other_admin = other_organization
        org, admin = organization
        with pytest.raises(NotFoundError):
            revoke_api_key(db_session, org.id, other_admin.id, current_key_id=admin.id)


@pytest.mark.security
class TestAuthenticate:
    @pytest.mark.parametrize("raw", [None, ""])
    def test_missing_key(self, db_session, raw):
        with pytest.raises(AuthenticationError, match="API key required"):
            authenticate(db_session, raw)

    def test_malformed_key_never_reaches_store(self, db_session):
        with patch.object(db_session, "query") as query:
            with pytest.raises(AuthenticationError):
                authenticate(db_session, "sk_live_not_ours")
        query.assert_not_called()

    def test_unknown_key(self, db_session):
        raw, _, _ = generate_api_key()
        with pytest.raises(AuthenticationError):
            authenticate(db_session, raw)

    def test_last_used_failure_does_not_block_auth(self, db_session, organization):
        _org, admin = organization
        with patch.object(db_session, "commit", side_effect=OperationalError("UPDATE", {}, Exception("locked"))):
            ctx = authenticate(db_session, admin.key)
        assert ctx.api_key_id == admin.id

    def test_usage_can_be_deferred(self, db_session, organization):
        _org, admin = organization

        ctx = authenticate(db_session, admin.key, record_usage=False)

        db_session.expire_all()
        assert db_session.get(ApiKey, ctx.api_key_id).last_used_at is None

        record_key_usage(ctx.api_key_id)

        db_session.expire_all()
        assert db_session.get(ApiKey, ctx.api_key_id).last_used_at is not None


@pytest.mark.unit
class TestAuthorize:
    def test_admin_is_superset(self, db_session, organization):
        ctx = authenticate(db_session, organization[1].key)
        for permission in Permission:
            authorize(ctx, permission)

    def test_missing_permission(self, db_session, organization):
        issued = create_api_key(db_session, organization[0].id, "reader", ["read"])
        ctx = authenticate(db_session, issued.key)

        assert has_permission(ctx, "read")
        with pytest.raises(AuthorizationError, match="upload"):
            authorize(ctx, Permission.UPLOAD)
