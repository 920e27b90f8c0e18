import json

import pytest

from server.core.ConnectionRegistry import ConnectionRegistry
from server.core.MessageHandlers import HANDLER_REGISTRY, EnvelopeRouter
from server.core.MessageTypes import INBOUND_MESSAGES


def _router():
    registry = ConnectionRegistry(ping_interval=60)
    return registry, EnvelopeRouter(registry)


async def _register(router, link, user_id, tailscale_ip=None):
    frame = {"type": "register", "userId": user_id}
    if tailscale_ip is not None:
        frame["tailscaleIP"] = tailscale_ip
    await router.dispatch(link, json.dumps(frame))


def test_every_inbound_type_has_a_handler():
    assert INBOUND_MESSAGES <= HANDLER_REGISTRY.keys()


@pytest.mark.asyncio
async def test_register_confirms_to_requester(make_link):
    registry, router = _router()
    link = make_link()

    await _register(router, link, "alice", "100.64.0.9")

    assert link.websocket.frames == [{"type": "registered", "userId": "alice", "tailscaleIp": "100.64.0.9"}]
    assert registry.lookup("alice").link is link
    registry.close()


@pytest.mark.asyncio
async def test_register_with_null_tailscale_ip(make_link):
    registry, router = _router()
    link = make_link()

    await _register(router, link, "alice", "null")

    assert link.websocket.frames == [{"type": "registered", "userId": "alice", "tailscaleIp": "N/A"}]
    registry.close()


@pytest.mark.asyncio
async def test_duplicate_registration_reports_error_to_requester_only(make_link):
    registry, router = _router()
    first, second = make_link(), make_link()
    await _register(router, first, "alice")

    await _register(router, second, "alice")

    assert second.websocket.frames == [{"type": "error", "message": 'User "alice" is already registered.'}]
    assert len(first.websocket.frames) == 1
    assert registry.lookup("alice").link is first
    registry.close()


@pytest.mark.asyncio
async def test_message_delivered_verbatim(make_link):
    registry, router = _router()
    alice, bob = make_link(), make_link()
    await _register(router, alice, "alice")
    await _register(router, bob, "bob")

    await router.dispatch(alice, '{"type":"message","from":"alice","to":"bob","message":"hi","timestamp":1}')

    assert bob.websocket.sent_messages[1:] == [
        '{"type":"message","to":"bob","from":"alice","message":"hi","timestamp":1}'
    ]
    # No delivery confirmation goes back to the sender
    assert len(alice.websocket.sent_messages) == 1
    registry.close()


@pytest.mark.asyncio
async def test_message_order_preserved_per_pair(make_link):
    registry, router = _router()
    alice, bob = make_link(), make_link()
    await _register(router, alice, "alice")
    await _register(router, bob, "bob")

    for i in range(5):
        await router.dispatch(alice, json.dumps(
            {"type": "message", "from": "alice", "to": "bob", "message": f"m{i}", "timestamp": i}
        ))

    assert [f["message"] for f in bob.websocket.frames_of("message")] == [f"m{i}" for i in range(5)]
    registry.close()


@pytest.mark.asyncio
async def test_message_to_unknown_identity_is_dropped(make_link):
    registry, router = _router()
    alice = make_link()
    await _register(router, alice, "alice")

    await router.dispatch(alice, '{"type":"message","from":"alice","to":"ghost","message":"hi","timestamp":1}')

    assert alice.websocket.frames_of("message") == []
    assert alice.websocket.frames_of("error") == []
    registry.close()


@pytest.mark.asyncio
async def test_message_to_disconnected_identity_is_dropped(make_link):
    registry, router = _router()
    alice, bob = make_link(), make_link()
    await _register(router, alice, "alice")
    await _register(router, bob, "bob")
    bob.websocket.drop()

    await router.dispatch(alice, '{"type":"message","from":"alice","to":"bob","message":"hi","timestamp":1}')

    assert bob.websocket.frames_of("message") == []
    assert alice.websocket.frames_of("error") == []
    registry.close()


@pytest.mark.asyncio
async def test_unregistered_sender_can_still_send(make_link):
    registry, router = _router()
    anonymous, bob = make_link(), make_link()
    await _register(router, bob, "bob")

    await router.dispatch(anonymous, '{"type":"message","from":"anon","to":"bob","message":"hey","timestamp":5}')

    assert bob.websocket.frames_of("message") == [
        {"type": "message", "to": "bob", "from": "anon", "message": "hey", "timestamp": 5}
    ]
    registry.close()


@pytest.mark.asyncio
async def test_non_string_sender_forwarded_unchanged(make_link):
    registry, router = _router()
    sender, bob = make_link(), make_link()
    await _register(router, bob, "bob")

    await router.dispatch(sender, '{"type":"message","from":42,"to":"bob","message":"hi","timestamp":1}')
    await router.dispatch(sender, '{"type":"webrtc-signal","from":null,"to":"bob","data":{"type":"offer"}}')

    assert bob.websocket.sent_messages[-2:] == [
        '{"type":"message","to":"bob","from":42,"message":"hi","timestamp":1}',
        '{"type":"webrtc-signal","from":null,"to":"bob","data":{"type":"offer"}}',
    ]
    registry.close()


@pytest.mark.asyncio
async def test_signal_relayed_verbatim(make_link):
    registry, router = _router()
    caller, callee = make_link(), make_link()
    await _register(router, caller, "caller")
    await _register(router, callee, "callee")
    data = {"type": "candidate", "candidate": "candidate:1 1 udp 2122260223 10.0.0.2 54400 typ host", "sdpMLineIndex": 0}

    await router.dispatch(caller, json.dumps({"type": "webrtc-signal", "from": "caller", "to": "callee", "data": data}))

    assert callee.websocket.frames_of("webrtc-signal") == [
        {"type": "webrtc-signal", "from": "caller", "to": "callee", "data": data}
    ]
    assert caller.websocket.frames_of("webrtc-signal") == []
    registry.close()


@pytest.mark.asyncio
async def test_signal_to_absent_peer_is_dropped(make_link):
    registry, router = _router()
    caller = make_link()
    await _register(router, caller, "caller")

    await router.dispatch(caller, '{"type":"webrtc-signal","from":"caller","to":"nobody","data":{"type":"offer"}}')

    assert len(caller.websocket.sent_messages) == 1
    registry.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        b"\x00\xff",
        "[]",
        '{"type":"message","to":"bob"}',
        '{"type":"subscribe","channel":"x"}',
        '{"type":"ping"}',
    ],
)
async def test_bad_frames_are_dropped_without_reply(make_link, raw):
    registry, router = _router()
    link, bob = make_link(), make_link()
    await _register(router, bob, "bob")

    await router.dispatch(link, raw)

    assert link.websocket.sent_messages == []
    assert len(bob.websocket.sent_messages) == 1
    registry.close()
