"""Tests for UserRepository.

These tests require PostgreSQL. Skipped automatically if the database is
not available.
"""

import uuid
from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from credence.core.errors import DuplicateEmailError
from credence.models.user import UserRole
from credence.repositories.user_repository import UserPatch, UserRepository

_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


class TestCreate:
    """Tests for UserRepository.create()."""

    async def test_normalizes_email_and_sets_defaults(self, db_session: AsyncSession):
        user = await UserRepository.create(db_session, email="  Mixed@Example.COM ")

        assert user.id is not None
        assert user.email == "mixed@example.com"
        assert user.role == UserRole.CONSUMER
        assert user.is_verified is False
        assert user.is_active is True
        assert user.created_at is not None

    async def test_duplicate_live_email(self, db_session: AsyncSession):
        await UserRepository.create(db_session, email="dup@example.com")

        with pytest.raises(DuplicateEmailError):
            await UserRepository.create(db_session, email="DUP@example.com")

        # Savepoint rolled back; the session is still usable
        assert await UserRepository.get_by_email(db_session, "dup@example.com")

    async def test_deleted_email_can_be_reused(self, db_session: AsyncSession):
        old = await UserRepository.create(db_session, email="reuse@example.com")
        await UserRepository.soft_delete(db_session, old.id, _NOW)

        new = await UserRepository.create(db_session, email="reuse@example.com")

        assert new.id != old.id


class TestLookups:
    """Tests for get_by_id(), get_by_email(), lock_for_update()."""

    async def test_get_by_email_is_case_insensitive(self, db_session: AsyncSession):
        user = await UserRepository.create(db_session, email="find@example.com")

        found = await UserRepository.get_by_email(db_session, "FIND@example.com")

        assert found is not None
        assert found.id == user.id

    async def test_deleted_user_is_hidden(self, db_session: AsyncSession):
        user = await UserRepository.create(db_session, email="gone@example.com")
        await UserRepository.soft_delete(db_session, user.id, _NOW)
        db_session.expire_all()

        assert await UserRepository.get_by_id(db_session, user.id) is None
        assert await UserRepository.get_by_email(db_session, "gone@example.com") is None
        assert await UserRepository.lock_for_update(db_session, user.id) is None
        deleted = await UserRepository.get_by_id(
            db_session, user.id, include_deleted=True
        )
        assert deleted is not None
        assert deleted.is_active is False

    async def test_lock_for_update_returns_user(self, db_session: AsyncSession):
        user = await UserRepository.create(db_session, email="lock@example.com")

        locked = await UserRepository.lock_for_update(db_session, user.id)

        assert locked is not None
        assert locked.id == user.id

    async def test_unknown_id(self, db_session: AsyncSession):
        assert await UserRepository.get_by_id(db_session, uuid.uuid4()) is None


class TestUpdate:
    """Tests for UserRepository.update()."""

    async def test_only_set_fields_change(self, db_session: AsyncSession):
        user = await UserRepository.create(
            db_session, email="patch@example.com", name="Original", phone="555"
        )

        updated = await UserRepository.update(
            db_session, user.id, UserPatch(name="Renamed", is_verified=True)
        )

        assert updated is not None
        assert updated.name == "Renamed"
        assert updated.phone == "555"
        assert updated.is_verified is True

    async def test_none_clears_a_field(self, db_session: AsyncSession):
        user = await UserRepository.create(
            db_session, email="clear@example.com", phone="555"
        )

        updated = await UserRepository.update(db_session, user.id, UserPatch(phone=None))

        assert updated.phone is None

    async def test_unknown_user(self, db_session: AsyncSession):
        assert (
            await UserRepository.update(db_session, uuid.uuid4(), UserPatch(name="x"))
            is None
        )

    def test_patch_changes(self):
        assert UserPatch(name="x", picture=None).changes() == {
            "name": "x",
            "picture": None,
        }
        assert UserPatch().changes() == {}


class TestLoginAndDeletion:
    """Tests for touch_last_login() and soft_delete()."""

    async def test_touch_last_login(self, db_session: AsyncSession):
        user = await UserRepository.create(db_session, email="seen@example.com")

        await UserRepository.touch_last_login(db_session, user.id, _NOW)
        await db_session.refresh(user)

        assert user.last_login_at == _NOW

    async def test_soft_delete_is_one_shot(self, db_session: AsyncSession):
        user = await UserRepository.create(db_session, email="once@example.com")

        assert await UserRepository.soft_delete(db_session, user.id, _NOW) is True
        assert await UserRepository.soft_delete(db_session, user.id, _NOW) is False
