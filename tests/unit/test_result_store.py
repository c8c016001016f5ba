import asyncio

import pytest

from product_insight.models.schemas import TaskResultRecord, TaskStatus
from product_insight.services.result_store import (
    InMemoryResultStore,
    ResultPublisher,
    ResultStore,
)


def make_record(task_id="categorizer", identifier="4006381333931"):
    return TaskResultRecord(
        run_id="run-1",
        task_id=task_id,
        tool_name="Automatic Categorizer",
        product_identifier=identifier,
        product_name="Stabilo Boss",
        product_kind="code",
        result_data={"main_category": "Office"},
        confidence_score=0.8,
        status=TaskStatus.COMPLETED,
    )


class FailingStore(ResultStore):
    async def save_task_result(self, record):
        raise RuntimeError("database is down")


class SlowStore(InMemoryResultStore):
    async def save_task_result(self, record):
        await asyncio.sleep(0.01)
        await super().save_task_result(record)


@pytest.mark.asyncio
async def test_publish_is_drained_into_store():
    store = InMemoryResultStore()
    publisher = ResultPublisher(store)
    publisher.start()

    publisher.publish(make_record("categorizer"))
    publisher.publish(make_record("trends"))
    await publisher.close()

    saved = await store.list_results("4006381333931")
    assert [r.task_id for r in saved] == ["categorizer", "trends"]
    assert publisher.get_stats()["saved"] == 2
    assert not publisher.is_running


@pytest.mark.asyncio
async def test_publish_does_not_wait_for_store():
    store = SlowStore()
    publisher = ResultPublisher(store)
    publisher.start()

    for task_id in ("a", "b", "c"):
        publisher.publish(make_record(task_id))
    assert store.count == 0

    await publisher.drain()
    assert store.count == 3
    await publisher.close()


@pytest.mark.asyncio
async def test_store_failures_are_counted_not_raised():
    publisher = ResultPublisher(FailingStore())
    publisher.start()

    publisher.publish(make_record())
    publisher.publish(make_record("trends"))
    await publisher.close()

    stats = publisher.get_stats()
    assert stats["failed"] == 2
    assert stats["saved"] == 0


@pytest.mark.asyncio
async def test_full_queue_drops_records():
    publisher = ResultPublisher(InMemoryResultStore(), max_queue_size=1)

    publisher.publish(make_record("a"))
    publisher.publish(make_record("b"))

    assert publisher.published == 1
    assert publisher.dropped == 1


@pytest.mark.asyncio
async def test_close_without_start_is_safe():
    publisher = ResultPublisher(InMemoryResultStore())

    await publisher.close()

    assert not publisher.is_running


@pytest.mark.asyncio
async def test_store_lists_by_product():
    store = InMemoryResultStore()
    await store.save_task_result(make_record(identifier="A"))
    await store.save_task_result(make_record(identifier="B"))

    assert len(await store.list_results("A")) == 1
    assert await store.list_results("missing") == []
    assert store.count == 2
