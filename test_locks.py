import asyncio

import pytest

from errors import ConflictError
from services.locks import KeyedLocks, chain_keys, fingerprint_keys


def test_key_helpers():
    assert fingerprint_keys("a@x.com", "111") == ["email:a@x.com", "phone:111"]
    assert fingerprint_keys(None, "111") == ["phone:111"]
    assert chain_keys([5, 2, 5]) == ["contact:2", "contact:5"]


@pytest.mark.asyncio
async def test_hold_serializes_same_key():
    locks = KeyedLocks()
    order = []

    async def worker(name):
        async with locks.hold(["email:a@x.com"]):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("first"), worker("second"))

    assert order == ["first-in", "first-out", "second-in", "second-out"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_disjoint_keys_do_not_block():
    locks = KeyedLocks()
    async with locks.hold(["email:a@x.com"]):
        async with locks.hold(["phone:111"], timeout=0.1):
            assert len(locks) == 2
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_timeout_raises_conflict_and_releases_partial_locks():
    locks = KeyedLocks()
    async with locks.hold(["phone:111"]):
        with pytest.raises(ConflictError):
            async with locks.hold(["email:a@x.com", "phone:111"], timeout=0.05):
                pass
        # email:a@x.com was taken first and must be free again
        async with locks.hold(["email:a@x.com"], timeout=0.05):
            pass
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_timeout_is_one_deadline_across_keys():
    locks = KeyedLocks()
    loop = asyncio.get_running_loop()

    async def occupy(key, seconds):
        async with locks.hold([key]):
            await asyncio.sleep(seconds)

    holders = [
        asyncio.create_task(occupy("email:a@x.com", 0.15)),
        asyncio.create_task(occupy("phone:1234567", 0.3)),
    ]
    await asyncio.sleep(0)

    started = loop.time()
    with pytest.raises(ConflictError):
        async with locks.hold(["email:a@x.com", "phone:1234567"], timeout=0.2):
            pass
    assert loop.time() - started < 0.28

    await asyncio.gather(*holders)
    assert len(locks) == 0
