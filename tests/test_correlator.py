import pytest

from hubbridge.correlator import RequestCorrelator
from hubbridge.errors import ConnectionLostError, RequestFailedError


async def test_ids_start_at_one_and_increase():
    c = RequestCorrelator()
    ids = [c.register("ping").id for _ in range(3)]
    assert ids == [1, 2, 3]
    assert len(c) == 3


async def test_result_resolves_and_removes():
    c = RequestCorrelator()
    p = c.register("get_states")
    assert c.resolve({"id": p.id, "type": "result", "success": True, "result": [1, 2]})
    assert await p.future == [1, 2]
    assert len(c) == 0


async def test_failed_result_rejects():
    c = RequestCorrelator()
    p = c.register("call_service")
    c.resolve({"id": p.id, "type": "result", "success": False,
               "error": {"code": "not_found", "message": "Service not found"}})
    with pytest.raises(RequestFailedError) as exc:
        await p.future
    assert exc.value.code == "not_found"


async def test_unknown_result_is_ignored():
    c = RequestCorrelator()
    c.register("ping")
    assert not c.resolve({"id": 42, "type": "result", "success": True})
    assert len(c) == 1


async def test_fail_all_rejects_everything_pending():
    c = RequestCorrelator()
    a, b = c.register("a"), c.register("b")
    c.fail_all(ConnectionLostError())
    for p in (a, b):
        with pytest.raises(ConnectionLostError):
            await p.future
    assert len(c) == 0
    # ids are not reused within the same connection
    assert c.register("c").id == 3


async def test_reset_starts_a_new_id_space():
    c = RequestCorrelator()
    old = c.register("a")
    c.register("b")
    c.reset(ConnectionLostError())
    with pytest.raises(ConnectionLostError):
        await old.future
    assert c.register("c").id == 1
