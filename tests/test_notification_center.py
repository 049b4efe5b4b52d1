"""Unit tests for the recipient-side notification center."""

import pytest

from eduspace_realtime.services.notification_center import NotificationCenter
from eduspace_realtime.utils.errors import NotificationNotFoundError


@pytest.fixture
def center(notification_repo) -> NotificationCenter:
    return NotificationCenter(notification_repo, page_size=2)


async def seed(repo, recipient_id: str, count: int, notification_type: str = "grade") -> list:
    rows = []
    for i in range(count):
        rows.append(await repo.create(recipient_id, {
            "title": f"Title {i}",
            "message": f"Body {i}",
            "type": notification_type,
            "related_id": f"rel-{i}",
            "class_id": "class-1",
        }))
    return rows


class TestNotificationCenterList:

    @pytest.mark.asyncio
    async def test_newest_first_and_paged(self, center, notification_repo) -> None:
        await seed(notification_repo, "u1", 3)

        items = await center.list("u1")

        assert [it["title"] for it in items] == ["Title 2", "Title 1"]

    @pytest.mark.asyncio
    async def test_explicit_limit(self, center, notification_repo) -> None:
        await seed(notification_repo, "u1", 3)

        assert len(await center.list("u1", limit=3)) == 3

    @pytest.mark.asyncio
    async def test_only_own_notifications(self, center, notification_repo) -> None:
        await seed(notification_repo, "u2", 2)

        assert await center.list("u1") == []


class TestNotificationCenterState:
    """Tests for unread -> read -> cleared transitions."""

    @pytest.mark.asyncio
    async def test_mark_as_read_once(self, center, notification_repo) -> None:
        (row,) = await seed(notification_repo, "u1", 1)

        assert await center.mark_as_read(row["_id"], "u1") is True
        assert await center.mark_as_read(row["_id"], "u1") is False
        assert await notification_repo.count_unread("u1") == 0

    @pytest.mark.asyncio
    async def test_cannot_touch_someone_elses_notification(self, center, notification_repo) -> None:
        (row,) = await seed(notification_repo, "u2", 1)

        with pytest.raises(NotificationNotFoundError):
            await center.mark_as_read(row["_id"], "u1")

        assert await notification_repo.count_unread("u2") == 1

    @pytest.mark.asyncio
    async def test_mark_all_as_read(self, center, notification_repo) -> None:
        await seed(notification_repo, "u1", 3)
        await seed(notification_repo, "u2", 1)

        assert await center.mark_all_as_read("u1") == 3
        assert await center.mark_all_as_read("u1") == 0
        assert await notification_repo.count_unread("u2") == 1

    @pytest.mark.asyncio
    async def test_clear_all_removes_read_and_unread(self, center, notification_repo) -> None:
        rows = await seed(notification_repo, "u1", 2)
        await center.mark_as_read(rows[0]["_id"], "u1")

        assert await center.clear_all("u1") == 2
        assert await notification_repo.count_for_recipient("u1") == 0


class TestNotificationCenterOpen:

    @pytest.mark.asyncio
    async def test_open_marks_read_and_returns_target(self, center, notification_repo) -> None:
        (row,) = await seed(notification_repo, "u1", 1, notification_type="assignment")

        target = await center.open(row["_id"], "u1", role="student")

        assert target.type == "assignment"
        assert target.related_id == "rel-0"
        assert target.class_id == "class-1"
        assert target.role == "student"
        assert await notification_repo.count_unread("u1") == 0

    @pytest.mark.asyncio
    async def test_open_already_read(self, center, notification_repo) -> None:
        (row,) = await seed(notification_repo, "u1", 1)
        await center.mark_as_read(row["_id"], "u1")

        target = await center.open(row["_id"], "u1")

        assert target.role is None

    @pytest.mark.asyncio
    async def test_open_missing(self, center) -> None:
        with pytest.raises(NotificationNotFoundError):
            await center.open("5f1d7f0e2a3b4c5d6e7f8a9b", "u1")
