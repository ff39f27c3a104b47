import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select, update

from pairplay.models import AsyncSessionLocal
from pairplay.models.game_invites import GameInvite
from pairplay.models.games import Game
from pairplay.game_invites import InviteMachine, invites
from pairplay.sessions import games
from pairplay.presence import presence
from pairplay.errors import (
    TooManyInFlight, PresenceNotQualified, NotFound, Withdrawn, Forbidden, InvalidState, DependencyFailure,
)


async def _stored_invites():
    async with AsyncSessionLocal() as session:
        res = await session.execute(select(GameInvite).order_by(GameInvite.id))
        return res.scalars().all()


async def _insert_stale_invite(sender, receiver, hours_old=48):
    async with AsyncSessionLocal() as session:
        invite = GameInvite(
            sender_id=sender.id,
            receiver_id=receiver.id,
            session_type='rps',
            status='pending',
            created_at=datetime.now(timezone.utc) - timedelta(hours=hours_old),
        )
        session.add(invite)
        await session.commit()
        await session.refresh(invite)
        return invite


class FailingFactory:
    def __init__(self):
        self.calls = 0

    async def create(self, session_type, participant_ids):
        self.calls += 1
        raise RuntimeError('game service down')

    async def abandon(self, session_id):
        pass


class CancellingFactory:
    """Creates a session but the sender cancels while it is being created"""

    def __init__(self, sender_id):
        self.sender_id = sender_id
        self.abandoned = []

    async def create(self, session_type, participant_ids):
        pending = await invites.list_sent(self.sender_id)
        await invites.cancel(pending[0].id, by_user_id=self.sender_id)
        return 'orphan-session'

    async def abandon(self, session_id):
        self.abandoned.append(session_id)


class AcceptingFactory:
    """The receiver's other accept lands while this one creates its session"""

    def __init__(self, invite_id, receiver_id):
        self.invite_id = invite_id
        self.receiver_id = receiver_id
        self.abandoned = []

    async def create(self, session_type, participant_ids):
        await invites.accept(self.invite_id, by_user_id=self.receiver_id)
        return 'late-session'

    async def abandon(self, session_id):
        self.abandoned.append(session_id)


@pytest_asyncio.fixture
async def friends(users, befriend, go_active):
    alice, bob, carol = users
    await befriend(alice, bob)
    await befriend(alice, carol)
    await go_active(alice, bob, carol)
    return alice, bob, carol


class TestSendInvite:

    @pytest.mark.asyncio
    async def test_send_between_active_friends(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'tictactoe')
        assert invite.status == 'pending'
        assert invite.session_id is None
        assert [i.id for i in await invites.list_received(bob.id)] == [invite.id]
        assert [i.id for i in await invites.list_sent(alice.id)] == [invite.id]

    @pytest.mark.asyncio
    async def test_one_invite_in_flight_per_sender(self, friends):
        alice, bob, carol = friends
        await invites.send(alice.id, bob.id, 'rps')
        with pytest.raises(TooManyInFlight):
            await invites.send(alice.id, carol.id, 'rps')
        assert len(await _stored_invites()) == 1

    @pytest.mark.asyncio
    async def test_index_rejects_racing_send(self, friends, monkeypatch):
        alice, bob, carol = friends
        await invites.send(alice.id, bob.id, 'rps')

        async def _nothing_in_flight(session, sender_id):
            return False

        monkeypatch.setattr(invites, '_in_flight', _nothing_in_flight)
        with pytest.raises(TooManyInFlight):
            await invites.send(alice.id, carol.id, 'wordle')
        assert len(await _stored_invites()) == 1

    @pytest.mark.asyncio
    async def test_receiver_must_be_active(self, friends):
        alice, bob, _ = friends
        await presence.set_active(bob.id, False)
        with pytest.raises(PresenceNotQualified):
            await invites.send(alice.id, bob.id, 'hangman')
        assert await _stored_invites() == []

    @pytest.mark.asyncio
    async def test_sender_must_be_active(self, friends):
        alice, bob, _ = friends
        await presence.mark_offline(alice.id)
        with pytest.raises(PresenceNotQualified):
            await invites.send(alice.id, bob.id, 'hangman')

    @pytest.mark.asyncio
    async def test_unknown_presence_is_not_qualified(self, users, befriend, go_active):
        alice, bob, _ = users
        await befriend(alice, bob)
        await go_active(alice)
        with pytest.raises(PresenceNotQualified):
            await invites.send(alice.id, bob.id, 'rps')

    @pytest.mark.asyncio
    async def test_only_friends_can_be_invited(self, users, go_active):
        alice, bob, _ = users
        await go_active(alice, bob)
        with pytest.raises(Forbidden):
            await invites.send(alice.id, bob.id, 'rps')

    @pytest.mark.asyncio
    async def test_unknown_game_type(self, friends):
        alice, bob, _ = friends
        with pytest.raises(InvalidState):
            await invites.send(alice.id, bob.id, 'chess')


class TestAcceptInvite:

    @pytest.mark.asyncio
    async def test_accept_returns_session_and_lingers_for_grace(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'tictactoe')
        session_id = await invites.accept(invite.id, by_user_id=bob.id)
        assert session_id

        sent = await invites.list_sent(alice.id)
        assert [(i.status, i.session_id) for i in sent] == [('accepted', session_id)]
        assert await invites.list_received(bob.id) == []

        game = await games.get(session_id)
        assert game.type == 'tictactoe'
        assert sorted(game.players) == sorted([alice.id, bob.id])
        assert game.status == 'active'

        await asyncio.sleep(invites.grace_seconds + 0.3)
        assert await invites.list_sent(alice.id) == []
        assert await _stored_invites() == []

    @pytest.mark.asyncio
    async def test_sender_may_invite_again_once_accepted(self, friends):
        alice, bob, carol = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        await invites.accept(invite.id, by_user_id=bob.id)
        again = await invites.send(alice.id, carol.id, 'rps')
        assert again.status == 'pending'

    @pytest.mark.asyncio
    async def test_only_receiver_accepts(self, friends):
        alice, bob, carol = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        with pytest.raises(Forbidden):
            await invites.accept(invite.id, by_user_id=carol.id)

    @pytest.mark.asyncio
    async def test_accept_after_decline_is_withdrawn(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'wordle')
        await invites.decline(invite.id, by_user_id=bob.id)
        assert await _stored_invites() == []
        with pytest.raises(Withdrawn):
            await invites.accept(invite.id, by_user_id=bob.id)

    @pytest.mark.asyncio
    async def test_accept_twice_is_invalid_state(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        await invites.accept(invite.id, by_user_id=bob.id)
        with pytest.raises(InvalidState):
            await invites.accept(invite.id, by_user_id=bob.id)

    @pytest.mark.asyncio
    async def test_factory_failure_leaves_invite_pending(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'hangman')
        failing = InviteMachine(session_factory=FailingFactory())
        with pytest.raises(DependencyFailure):
            await failing.accept(invite.id, by_user_id=bob.id)
        assert [i.status for i in await _stored_invites()] == ['pending']

        # retry through the working factory
        session_id = await invites.accept(invite.id, by_user_id=bob.id)
        assert session_id

    @pytest.mark.asyncio
    async def test_cancel_during_session_creation(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        factory = CancellingFactory(alice.id)
        racing = InviteMachine(session_factory=factory)
        with pytest.raises(Withdrawn):
            await racing.accept(invite.id, by_user_id=bob.id)
        assert factory.abandoned == ['orphan-session']
        assert await _stored_invites() == []


    @pytest.mark.asyncio
    async def test_losing_concurrent_accept_is_invalid_state(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        factory = AcceptingFactory(invite.id, bob.id)
        racing = InviteMachine(session_factory=factory)
        with pytest.raises(InvalidState):
            await racing.accept(invite.id, by_user_id=bob.id)
        assert factory.abandoned == ['late-session']
        sent = await invites.list_sent(alice.id)
        assert [i.status for i in sent] == ['accepted']
        assert sent[0].session_id != 'late-session'

    @pytest.mark.asyncio
    async def test_accepted_invite_left_by_shutdown_is_swept(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        await invites.accept(invite.id, by_user_id=bob.id)
        # restart inside the grace window: the delayed removal never runs
        await invites.shutdown()
        async with AsyncSessionLocal() as session:
            await session.execute(
                update(GameInvite)
                .where(GameInvite.id == invite.id)
                .values(updated_at=datetime.now(timezone.utc) - timedelta(days=3))
            )
            await session.commit()

        assert await invites.list_sent(alice.id) == []
        assert await invites.sweep_stale() == 1
        assert await _stored_invites() == []

    @pytest.mark.asyncio
    async def test_new_invite_gets_fresh_id(self, friends):
        alice, bob, _ = friends
        first = await invites.send(alice.id, bob.id, 'rps')
        await invites.decline(first.id, by_user_id=bob.id)
        second = await invites.send(alice.id, bob.id, 'rps')
        assert second.id != first.id
        with pytest.raises(Withdrawn):
            await invites.accept(first.id, by_user_id=bob.id)
        assert [i.status for i in await _stored_invites()] == ['pending']

class TestRemoveInvite:

    @pytest.mark.asyncio
    async def test_receiver_cancel_and_sender_cancel(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        await invites.cancel(invite.id, by_user_id=bob.id)
        assert await _stored_invites() == []
        invite = await invites.send(alice.id, bob.id, 'rps')
        await invites.cancel(invite.id, by_user_id=alice.id)
        assert await _stored_invites() == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_cancel(self, friends):
        alice, bob, carol = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        with pytest.raises(Forbidden):
            await invites.cancel(invite.id, by_user_id=carol.id)

    @pytest.mark.asyncio
    async def test_sender_cannot_decline(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'rps')
        with pytest.raises(Forbidden):
            await invites.decline(invite.id, by_user_id=alice.id)

    @pytest.mark.asyncio
    async def test_decline_missing_invite(self, friends):
        _, bob, _ = friends
        with pytest.raises(NotFound):
            await invites.decline(9999, by_user_id=bob.id)

    @pytest.mark.asyncio
    async def test_cancel_purges_stale_invites(self, friends):
        alice, bob, carol = friends
        stale = await _insert_stale_invite(carol, alice)
        assert await invites.list_received(alice.id) == []

        invite = await invites.send(alice.id, bob.id, 'rps')
        await invites.cancel(invite.id, by_user_id=alice.id)
        assert stale.id not in [i.id for i in await _stored_invites()]
        assert await _stored_invites() == []

    @pytest.mark.asyncio
    async def test_sweep_only_touches_stale_pending(self, friends):
        alice, bob, carol = friends
        await _insert_stale_invite(carol, alice)
        fresh = await invites.send(alice.id, bob.id, 'rps')
        assert await invites.sweep_stale() == 1
        assert [i.id for i in await _stored_invites()] == [fresh.id]


    @pytest.mark.asyncio
    async def test_cancel_survives_purge_failure(self, friends, monkeypatch):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'rps')

        async def _broken_purge(user_ids):
            raise RuntimeError('purge exploded')

        monkeypatch.setattr(invites, 'purge_stale', _broken_purge)
        await invites.cancel(invite.id, by_user_id=alice.id)
        assert await _stored_invites() == []

class TestInviteSubscriptions:

    @pytest.mark.asyncio
    async def test_received_snapshots_follow_changes(self, friends):
        alice, bob, _ = friends
        stream = invites.subscribe_received(bob.id)
        try:
            assert await asyncio.wait_for(stream.__anext__(), 1) == []
            invite = await invites.send(alice.id, bob.id, 'rps')
            snapshot = await asyncio.wait_for(stream.__anext__(), 1)
            assert [i.id for i in snapshot] == [invite.id]
            await invites.cancel(invite.id, by_user_id=alice.id)
            assert await asyncio.wait_for(stream.__anext__(), 1) == []
        finally:
            await stream.aclose()

    @pytest.mark.asyncio
    async def test_sender_sees_accepted_session(self, friends):
        alice, bob, _ = friends
        invite = await invites.send(alice.id, bob.id, 'wordle')
        stream = invites.subscribe_sent(alice.id)
        try:
            first = await asyncio.wait_for(stream.__anext__(), 1)
            assert [i.status for i in first] == ['pending']
            session_id = await invites.accept(invite.id, by_user_id=bob.id)
            snapshot = await asyncio.wait_for(stream.__anext__(), 1)
            assert [(i.status, i.session_id) for i in snapshot] == [('accepted', session_id)]
            # the grace removal publishes once more
            assert await asyncio.wait_for(stream.__anext__(), 3) == []
        finally:
            await stream.aclose()
