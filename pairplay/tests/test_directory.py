import pytest

from pairplay.directory import directory
from pairplay.friend_requests import friend_requests


@pytest.mark.asyncio
async def test_blank_query_returns_nothing(users):
    alice, _, _ = users
    assert await directory.search('', alice.id) == []
    assert await directory.search('   ', alice.id) == []


@pytest.mark.asyncio
async def test_search_is_case_insensitive_and_excludes_viewer(users):
    alice, _, carol = users
    results = await directory.search('SMITH', alice.id)
    assert [r.id for r in results] == [carol.id]


@pytest.mark.asyncio
async def test_wildcards_match_literally(users):
    alice, _, _ = users
    assert await directory.search('%', alice.id) == []
    assert await directory.search('_', alice.id) == []


@pytest.mark.asyncio
async def test_results_carry_relationship_state(users, befriend):
    alice, bob, carol = users
    fr = await friend_requests.send(alice.id, bob.id)
    await befriend(bob, carol)

    by_bob = {r.id: r for r in await directory.search('smith', bob.id)}
    assert by_bob[alice.id].pending_request_id == fr.id
    assert by_bob[alice.id].pending_direction == 'received'
    assert not by_bob[alice.id].is_friend
    assert by_bob[carol.id].pending_request_id is None
    assert by_bob[carol.id].is_friend

    by_alice = {r.id: r for r in await directory.search('bob', alice.id)}
    assert by_alice[bob.id].pending_direction == 'sent'


@pytest.mark.asyncio
async def test_results_ordered_by_display_name(users):
    _, bob, _ = users
    results = await directory.search('smith', bob.id)
    assert [r.display_name for r in results] == ['Alice Smith', 'Carol Smithers']
