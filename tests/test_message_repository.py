import asyncio

import pytest

from pintuchat.errors import ValidationError
from pintuchat.repositories.message_repository import MessageRepository


@pytest.mark.asyncio
async def test_append_persists_unread_message(message_repo, users):
    saved = await message_repo.append(users["seeker"], users["recruiter"], "  Halo, apakah lowongan masih dibuka?  ")

    assert saved["_id"]
    assert saved["seq"] == 1
    assert saved["content"] == "Halo, apakah lowongan masih dibuka?"
    assert saved["is_read"] is False
    assert saved["created_at"].tzinfo is not None

    items, _ = await message_repo.list_thread(users["seeker"], users["recruiter"])
    assert [m["_id"] for m in items] == [saved["_id"]]


@pytest.mark.asyncio
async def test_append_assigns_increasing_sequence_and_non_decreasing_time(message_repo, users):
    saved = [await message_repo.append(users["seeker"], users["recruiter"], f"msg {i}") for i in range(5)]

    assert [m["seq"] for m in saved] == [1, 2, 3, 4, 5]
    stamps = [m["created_at"] for m in saved]
    assert stamps == sorted(stamps)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content, code",
    [
        ("", "empty_content"),
        ("   \n\t ", "empty_content"),
        (None, "empty_content"),
        ("x" * 11, "content_too_long"),
    ],
)
async def test_append_rejects_bad_content_without_writing(db, users, content, code):
    repo = MessageRepository(db, max_length=10)

    with pytest.raises(ValidationError) as exc:
        await repo.append(users["seeker"], users["recruiter"], content)

    assert exc.value.code == code
    assert await db["messages"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_append_rejects_self_addressed_message(db, message_repo, users):
    with pytest.raises(ValidationError) as exc:
        await message_repo.append(users["seeker"], users["seeker"], "note to self")

    assert exc.value.code == "self_addressed"
    assert await db["messages"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_content_at_exact_bound_is_accepted(db, users):
    repo = MessageRepository(db, max_length=10)

    saved = await repo.append(users["seeker"], users["recruiter"], "x" * 10)

    assert saved["content"] == "x" * 10


@pytest.mark.asyncio
async def test_thread_is_identical_for_both_participants(message_repo, users):
    a, b = users["seeker"], users["recruiter"]
    await message_repo.append(a, b, "Selamat pagi")
    await message_repo.append(b, a, "Pagi, ada yang bisa dibantu?")
    await message_repo.append(a, b, "Saya ingin menanyakan posisi analis data")
    await message_repo.append(a, users["other"], "unrelated")

    from_a, _ = await message_repo.list_thread(a, b)
    from_b, _ = await message_repo.list_thread(b, a)

    assert [m["_id"] for m in from_a] == [m["_id"] for m in from_b]
    assert [m["content"] for m in from_a] == [
        "Selamat pagi",
        "Pagi, ada yang bisa dibantu?",
        "Saya ingin menanyakan posisi analis data",
    ]


@pytest.mark.asyncio
async def test_thread_pages_walk_back_in_stable_order(message_repo, users):
    a, b = users["seeker"], users["recruiter"]
    for i in range(1, 6):
        await message_repo.append(a if i % 2 else b, b if i % 2 else a, f"m{i}")

    page, cursor = await message_repo.list_thread(a, b, limit=2)
    assert [m["content"] for m in page] == ["m4", "m5"]
    assert cursor is not None

    page, cursor = await message_repo.list_thread(a, b, limit=2, cursor=cursor)
    assert [m["content"] for m in page] == ["m2", "m3"]

    page, cursor = await message_repo.list_thread(b, a, limit=2, cursor=cursor)
    assert [m["content"] for m in page] == ["m1"]
    assert cursor is None


@pytest.mark.asyncio
async def test_exact_page_fit_has_no_next_cursor(message_repo, users):
    a, b = users["seeker"], users["recruiter"]
    await message_repo.append(a, b, "one")
    await message_repo.append(a, b, "two")

    page, cursor = await message_repo.list_thread(a, b, limit=2)

    assert len(page) == 2
    assert cursor is None


@pytest.mark.asyncio
@pytest.mark.parametrize("cursor", ["abc", "0", "-3"])
async def test_malformed_cursor_is_rejected(message_repo, users, cursor):
    with pytest.raises(ValidationError) as exc:
        await message_repo.list_thread(users["seeker"], users["recruiter"], cursor=cursor)

    assert exc.value.code == "invalid_cursor"


@pytest.mark.asyncio
async def test_mark_read_is_idempotent_and_scoped_to_the_pair(message_repo, users):
    a, b = users["seeker"], users["recruiter"]
    await message_repo.append(b, a, "Undangan interview")
    await message_repo.append(b, a, "Hari Senin jam 10")
    await message_repo.append(a, b, "Baik, terima kasih")
    await message_repo.append(users["other"], a, "Tawaran lain")

    assert await message_repo.mark_read(a, b) == 2
    assert await message_repo.mark_read(a, b) == 0

    thread, _ = await message_repo.list_thread(a, b)
    assert [m["is_read"] for m in thread] == [True, True, False]
    other, _ = await message_repo.list_thread(a, users["other"])
    assert other[0]["is_read"] is False


@pytest.mark.asyncio
async def test_mark_read_on_empty_store_is_zero(message_repo, users):
    assert await message_repo.mark_read(users["seeker"], users["recruiter"]) == 0


@pytest.mark.asyncio
async def test_message_appended_during_mark_read_stays_unread(message_repo, users, monkeypatch):
    a, b = users["seeker"], users["recruiter"]
    await message_repo.append(b, a, "before")
    original = message_repo.latest_sequence

    async def racing_latest_sequence():
        high_water = await original()
        # a send lands between the high-water read and the update
        await message_repo.append(b, a, "after")
        return high_water

    monkeypatch.setattr(message_repo, "latest_sequence", racing_latest_sequence)

    assert await message_repo.mark_read(a, b) == 1

    thread, _ = await message_repo.list_thread(a, b)
    assert [(m["content"], m["is_read"]) for m in thread] == [("before", True), ("after", False)]


@pytest.mark.asyncio
async def test_concurrent_mark_reads_flip_each_message_once(message_repo, users):
    me, them = users["seeker"], users["recruiter"]
    for i in range(4):
        await message_repo.append(them, me, f"m{i}")

    counts = await asyncio.gather(*(message_repo.mark_read(me, them) for _ in range(3)))

    assert sum(counts) == 4


@pytest.mark.asyncio
async def test_conversation_summaries_are_folded_by_the_store(message_repo, users):
    me, recruiter, other = users["seeker"], users["recruiter"], users["other"]
    await message_repo.append(recruiter, me, "r1")
    await message_repo.append(other, me, "o1")
    await message_repo.append(recruiter, me, "r2")
    await message_repo.append(me, other, "o2")
    await message_repo.append(other, me, "o3")
    await message_repo.mark_read(me, other)
    await message_repo.append(recruiter, me, "r3")

    rows = await message_repo.conversation_summaries(me)

    assert [(r["counterpart_id"], r["last_message"]["content"], r["unread_count"]) for r in rows] == [
        (recruiter, "r3", 3),
        (other, "o3", 0),
    ]
    assert isinstance(rows[0]["last_message"]["_id"], str)
    assert rows[0]["last_message"]["created_at"].tzinfo is not None
