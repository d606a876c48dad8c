"""
Presence registry tests.

What we test:
    ✅ First connection fires exactly one online signal
    ✅ Second device does not re-fire online
    ✅ Last disconnect fires exactly one offline signal
    ✅ Unknown unregister is a silent no-op
    ✅ Property: online iff connection set non-empty, one signal per transition
"""

from hypothesis import given, settings as hsettings
from hypothesis import strategies as st

from social_api.realtime.presence import PresenceRegistry


def _recording_registry():
    registry = PresenceRegistry()
    signals = []
    registry.subscribe(lambda user_id, online: signals.append((user_id, online)))
    return registry, signals


class TestPresenceTransitions:

    def test_first_connection_goes_online(self):
        registry, signals = _recording_registry()

        assert registry.register("alice", "c1") is True

        assert registry.is_online("alice")
        assert registry.online_users() == {"alice"}
        assert signals == [("alice", True)]

    def test_second_device_does_not_refire_online(self):
        registry, signals = _recording_registry()
        registry.register("alice", "c1")

        assert registry.register("alice", "c2") is False
        assert registry.register("alice", "c2") is False

        assert signals == [("alice", True)]
        assert registry.connections("alice") == frozenset({"c1", "c2"})

    def test_offline_only_after_last_connection(self):
        registry, signals = _recording_registry()
        registry.register("alice", "c1")
        registry.register("alice", "c2")

        assert registry.unregister("alice", "c1") is False
        assert registry.is_online("alice")

        assert registry.unregister("alice", "c2") is True
        assert not registry.is_online("alice")
        assert signals == [("alice", True), ("alice", False)]

    def test_unknown_unregister_is_noop(self):
        registry, signals = _recording_registry()
        registry.register("alice", "c1")

        assert registry.unregister("bob", "c9") is False
        assert registry.unregister("alice", "c9") is False

        assert registry.is_online("alice")
        assert signals == [("alice", True)]

    def test_failing_listener_does_not_break_registry(self):
        registry, signals = _recording_registry()

        def boom(user_id, online):
            raise RuntimeError("listener bug")

        registry.subscribe(boom)
        registry.register("alice", "c1")

        assert registry.is_online("alice")
        assert signals == [("alice", True)]


operations = st.lists(
    st.tuples(
        st.booleans(),
        st.sampled_from(["alice", "bob", "carol"]),
        st.sampled_from(["c1", "c2", "c3"]),
    ),
    max_size=60,
)


class TestPresenceProperty:

    @hsettings(max_examples=200, deadline=None)
    @given(operations)
    def test_online_iff_connections_and_one_signal_per_transition(self, ops):
        registry, signals = _recording_registry()
        model: dict[str, set[str]] = {}
        expected = []

        for is_register, user_id, connection_id in ops:
            before = bool(model.get(user_id))
            if is_register:
                registry.register(user_id, connection_id)
                model.setdefault(user_id, set()).add(connection_id)
            else:
                registry.unregister(user_id, connection_id)
                model.get(user_id, set()).discard(connection_id)
            after = bool(model.get(user_id))
            if before != after:
                expected.append((user_id, after))

            for uid in ("alice", "bob", "carol"):
                assert registry.is_online(uid) == bool(model.get(uid))

        assert signals == expected
        assert registry.online_users() == {u for u, conns in model.items() if conns}
