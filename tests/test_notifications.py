from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from core.errors import NotFoundError
from models.notification import Notification
from models.store import Store, StoreStatus
from services import notifications as notification_service
from services.fanout import FollowerFanout
from services.feed import NotificationFeed, render_message
from services.lifecycle import LifecycleEngine
from services.notifications import NotificationScheduler, send_notification as real_send_notification
from services.stores import StoreService
from tasks.notification_tasks import _backoff, deliver_notification_task, fanout_new_listing_task

NOW = datetime(2026, 3, 10, 12, 0, 0)


def _store(**overrides):
    values = {
        "id": 3,
        "owner_id": 42,
        "name": "Baku Bikes",
        "status": StoreStatus.ACTIVE.value,
        "expires_at": NOW + timedelta(days=3),
        "grace_period_ends_at": None,
        "deactivated_at": None,
        "last_notification_at": None,
    }
    values.update(overrides)
    return Store(**values)


@pytest.fixture
def sent():
    return []


@pytest.fixture
def scheduler(sent):
    def _dispatch(user_id, store_id, kind, message, listing_id):
        sent.append((user_id, store_id, kind, message))

    return NotificationScheduler(dispatch=_dispatch, cooldown_hours=12, warning_days=[7, 3, 1], grace_period_days=7)


@pytest.fixture
def lifecycle():
    return LifecycleEngine(grace_period_days=7, archive_after_days=90)


class TestDueNotification:
    @pytest.mark.parametrize("days,expected", [(7, "warning"), (3, "warning"), (1, "warning"), (5, None), (10, None)])
    def test_warning_thresholds(self, scheduler, lifecycle, days, expected):
        store = _store(expires_at=NOW + timedelta(days=days))
        info = lifecycle.expiration_info(store, NOW)
        assert scheduler.due_notification(store, info) == expected

    def test_grace_period_alert_on_first_day(self, scheduler, lifecycle):
        store = _store(
            status=StoreStatus.GRACE_PERIOD.value,
            expires_at=NOW - timedelta(hours=2),
            grace_period_ends_at=NOW - timedelta(hours=2) + timedelta(days=7),
        )
        info = lifecycle.expiration_info(store, NOW)
        assert scheduler.due_notification(store, info) == "grace_period"

    def test_deactivated_alert_on_deactivation_day(self, scheduler, lifecycle):
        store = _store(
            status=StoreStatus.DEACTIVATED.value,
            expires_at=NOW - timedelta(days=8),
            grace_period_ends_at=NOW - timedelta(days=1),
            deactivated_at=NOW,
        )
        info = lifecycle.expiration_info(store, NOW)
        assert scheduler.due_notification(store, info) == "deactivated"

    def test_no_info_no_alert(self, scheduler):
        assert scheduler.due_notification(_store(), None) is None


class TestSendExpirationNotification:
    def test_sends_to_owner_and_stamps_cooldown(self, scheduler, sent):
        store = _store()

        assert scheduler.send_expiration_notification(store, "warning", NOW) is True

        assert store.last_notification_at == NOW
        assert sent[0][:3] == (42, 3, "warning")
        assert "Baku Bikes" in sent[0][3]

    def test_cooldown_is_shared_by_all_kinds(self, scheduler, sent):
        store = _store()
        scheduler.send_expiration_notification(store, "warning", NOW)

        assert scheduler.send_expiration_notification(store, "grace_period", NOW + timedelta(hours=11)) is False
        assert scheduler.send_expiration_notification(store, "grace_period", NOW + timedelta(hours=12)) is True
        assert [kind for _, _, kind, _ in sent] == ["warning", "grace_period"]

    def test_rejects_unknown_kind(self, scheduler, sent):
        assert scheduler.send_expiration_notification(_store(), "promo", NOW) is False
        assert sent == []

    def test_dispatch_failure_is_swallowed(self):
        scheduler = NotificationScheduler(dispatch=Mock(side_effect=RuntimeError("broker down")))
        assert scheduler.send_expiration_notification(_store(), "warning", NOW) is False

    def test_evaluate_stamps_without_dispatching(self, scheduler, lifecycle, sent):
        store = _store(expires_at=NOW + timedelta(days=1))

        alert = scheduler.evaluate(store, lifecycle.expiration_info(store, NOW), NOW)

        assert (alert.user_id, alert.store_id, alert.kind) == (42, 3, "warning")
        assert store.last_notification_at == NOW
        assert sent == []
        assert scheduler.evaluate(store, lifecycle.expiration_info(store, NOW), NOW) is None

        assert scheduler.deliver(alert) is True
        assert [kind for _, _, kind, _ in sent] == ["warning"]


class TestSendNotification:
    def test_queue_failure_is_swallowed(self, monkeypatch):
        task = Mock()
        task.delay.side_effect = ConnectionError("redis unavailable")
        monkeypatch.setattr(notification_service, "deliver_notification_task", task)

        real_send_notification(1, 2, "warning", "hello")

        task.delay.assert_called_once_with(1, 2, "warning", "hello", None)


class TestTemplates:
    def test_warning_pluralisation(self):
        assert "1 day." in render_message("warning", {"store_name": "A", "days_left": 1})
        assert "3 days." in render_message("warning", {"store_name": "A", "days_left": 3})

    def test_grace_period(self):
        message = render_message(
            "grace_period", {"store_name": "A", "grace_days": 7, "grace_ends_on": "2026-03-17"}
        )
        assert "7-day grace period" in message
        assert "2026-03-17" in message


class TestStatusUpdateNotifications:
    def test_warning_sent_on_status_check(self, db, make_store, dispatched, now):
        store = make_store(expires_at=now + timedelta(days=3))

        StoreService(db).update_store_status(store.id, now)

        assert len(dispatched["notifications"]) == 1
        entry = dispatched["notifications"][0]
        assert entry["user_id"] == store.owner_id
        assert entry["kind"] == "warning"
        assert "3 days" in entry["message"]

    def test_grace_alert_after_expiry(self, db, make_store, dispatched, now):
        store = make_store(expires_at=now - timedelta(hours=2))

        StoreService(db).update_store_status(store.id, now)

        db.refresh(store)
        assert store.status == StoreStatus.GRACE_PERIOD.value
        assert [n["kind"] for n in dispatched["notifications"]] == ["grace_period"]

    def test_deactivation_alert(self, db, make_store, dispatched, now):
        store = make_store(
            status=StoreStatus.GRACE_PERIOD.value,
            expires_at=now - timedelta(days=8),
            grace_period_ends_at=now - timedelta(days=1),
        )

        StoreService(db).update_store_status(store.id, now)

        assert [n["kind"] for n in dispatched["notifications"]] == ["deactivated"]
        assert (now + timedelta(days=90)).date().isoformat() in dispatched["notifications"][0]["message"]

    def test_failed_commit_sends_nothing_and_retry_sends_once(self, db, make_store, dispatched, now, monkeypatch):
        store = make_store(expires_at=now + timedelta(days=3))
        service = StoreService(db)
        real_commit = db.commit
        failures = []

        def _commit_fails_once():
            if not failures:
                failures.append(1)
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        monkeypatch.setattr(db, "commit", _commit_fails_once)

        with pytest.raises(OperationalError):
            service.update_store_status(store.id, now)
        assert dispatched["notifications"] == []

        service.update_store_status(store.id, now + timedelta(minutes=1))

        assert [n["kind"] for n in dispatched["notifications"]] == ["warning"]
        db.refresh(store)
        assert store.last_notification_at == now + timedelta(minutes=1)

    def test_second_check_in_cooldown_sends_nothing(self, db, make_store, dispatched, now):
        store = make_store(expires_at=now + timedelta(days=3))
        service = StoreService(db)

        service.update_store_status(store.id, now)
        service.update_store_status(store.id, now + timedelta(hours=1))

        assert len(dispatched["notifications"]) == 1


class TestNotificationFeed:
    def test_append_and_list(self, db):
        feed = NotificationFeed(db)
        feed.append(5, None, "warning", "first")
        feed.append(5, None, "warning", "second")
        feed.append(6, None, "warning", "other user")
        db.commit()

        assert {n.message for n in feed.for_user(5)} == {"first", "second"}

    def test_mark_read(self, db):
        feed = NotificationFeed(db)
        notification = feed.append(5, None, "warning", "hello")
        db.commit()

        feed.mark_read(5, notification.id)

        assert feed.for_user(5, unread_only=True) == []

    def test_mark_read_of_other_users_entry(self, db):
        feed = NotificationFeed(db)
        notification = feed.append(5, None, "warning", "hello")
        db.commit()

        with pytest.raises(NotFoundError):
            feed.mark_read(6, notification.id)


class TestFollowerFanout:
    def test_follow_is_a_set(self, db, make_store):
        store = make_store()
        fanout = FollowerFanout(db)

        assert fanout.follow(store.id, 9) is True
        assert fanout.follow(store.id, 9) is False
        assert fanout.follower_ids(store.id) == {9}
        assert fanout.is_following(store.id, 9)

    def test_unfollow(self, db, make_store):
        store = make_store()
        fanout = FollowerFanout(db)
        fanout.follow(store.id, 9)

        assert fanout.unfollow(store.id, 9) is True
        assert fanout.unfollow(store.id, 9) is False
        assert not fanout.is_following(store.id, 9)

    def test_followed_store_ids(self, db, make_store):
        first, second = make_store(), make_store()
        fanout = FollowerFanout(db)
        fanout.follow(second.id, 9)
        fanout.follow(first.id, 9)

        assert fanout.followed_store_ids(9) == [first.id, second.id]

    def test_notify_followers(self, db, make_store, make_listing):
        store = make_store(name="Baku Bikes")
        listing = make_listing(store)
        fanout = FollowerFanout(db)
        for user_id in (9, 10):
            fanout.follow(store.id, user_id)

        assert fanout.notify_followers(store.id, listing.id) == 2
        db.commit()

        rows = db.query(Notification).filter(Notification.kind == "new_listing").all()
        assert sorted(row.user_id for row in rows) == [9, 10]
        assert all(row.listing_id == listing.id for row in rows)
        assert rows[0].message == "Baku Bikes added a new listing."

    def test_notify_without_followers(self, db, make_store):
        assert FollowerFanout(db).notify_followers(make_store().id, 1) == 0

    def test_notify_missing_store(self, db):
        assert FollowerFanout(db).notify_followers(12345, 1) == 0


class TestTasks:
    def test_backoff(self):
        assert [_backoff(n) for n in (0, 1, 3, 10)] == [1, 2, 8, 60]

    def test_deliver_notification_task(self, db):
        result = deliver_notification_task.delay(5, None, "warning", "queued").get()

        assert result["status"] == "delivered"
        db.expire_all()
        assert [n.message for n in NotificationFeed(db).for_user(5)] == ["queued"]

    def test_fanout_task(self, db, make_store, make_listing):
        store = make_store()
        listing = make_listing(store)
        FollowerFanout(db).follow(store.id, 9)

        result = fanout_new_listing_task.delay(store.id, listing.id).get()

        assert result == {"status": "sent", "store_id": store.id, "notified": 1}
        db.expire_all()
        assert len(NotificationFeed(db).for_user(9)) == 1
