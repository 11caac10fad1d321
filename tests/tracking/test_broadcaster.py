from __future__ import annotations

from milestonecontrol.app.tracking import StateBroadcaster
from milestonecontrol.app.tracking.broadcast import COMMAND_EVENT, METRICS_EVENT, STATE_EVENT
from milestonecontrol.domain.tracking import TodoStatus, TrackingStore


def test_full_observer_drops_without_blocking_others() -> None:
    broadcaster = StateBroadcaster()
    slow = broadcaster.subscribe(queue_size=1)
    fast = broadcaster.subscribe(queue_size=10)

    assert broadcaster.publish("tick", {"n": 1}) == 2
    assert broadcaster.publish("tick", {"n": 2}) == 1

    assert slow.dropped == 1
    assert [message.payload["n"] for message in slow.drain()] == [1]
    assert [message.payload["n"] for message in fast.drain()] == [1, 2]


def test_unsubscribed_observer_receives_nothing() -> None:
    broadcaster = StateBroadcaster()
    subscription = broadcaster.subscribe()
    assert broadcaster.subscriber_count == 1
    broadcaster.unsubscribe(subscription)
    assert broadcaster.subscriber_count == 0
    assert broadcaster.publish("tick", {}) == 0
    assert subscription.get(timeout=0.01) is None


def test_broadcast_state_sends_snapshot_then_metrics() -> None:
    store = TrackingStore()
    milestone_id = store.create_milestone("Frontend Development", phase=3)
    todo_id = store.create_todo(milestone_id, "Responsive design implementation")
    events = store.set_todo_status(todo_id, TodoStatus.COMPLETED)
    broadcaster = StateBroadcaster(recent_limit=5)
    subscription = broadcaster.subscribe()

    broadcaster.broadcast_state(store, events[-1])

    state, metrics = subscription.drain()
    assert state.kind == STATE_EVENT
    assert state.payload["trigger"]["id"] == events[-1].id
    assert state.payload["milestones"][0]["status"] == "completed"
    assert len(state.payload["recentActivity"]) <= 5
    assert metrics.kind == METRICS_EVENT
    assert metrics.payload["completed_milestones"] == 1


def test_acknowledge_shapes() -> None:
    broadcaster = StateBroadcaster()
    subscription = broadcaster.subscribe()

    ok = broadcaster.acknowledge("pass_test: x", state_changed=True)
    failed = broadcaster.acknowledge("garbage", error="command must look like 'verb: target'")

    assert set(ok) == {"command", "success", "stateChanged", "timestamp"}
    assert ok["success"] is True and ok["stateChanged"] is True
    assert set(failed) == {"command", "success", "error", "timestamp"}
    assert failed["success"] is False
    assert [message.kind for message in subscription.drain()] == [COMMAND_EVENT, COMMAND_EVENT]
