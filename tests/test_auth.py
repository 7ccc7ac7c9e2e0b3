from datetime import timedelta

import pytest
from fastapi import HTTPException

from chatsync.auth import create_access_token, get_current_active_user, get_user_from_token


@pytest.mark.asyncio
async def test_token_resolves_to_user(db, room):
    token = create_access_token({"sub": room.bob.id})

    user = await get_user_from_token(token, db)

    assert user.id == room.bob.id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "make_token",
    [
        lambda room: "not-a-jwt",
        lambda room: create_access_token({"sub": room.bob.id}, expires_delta=timedelta(seconds=-5)),
        lambda room: create_access_token({"sub": "01JZZZZZZZZZZZZZZZZZZZZZZZ"}),
        lambda room: create_access_token({"role": "admin"}),
    ],
)
async def test_bad_tokens_are_rejected(db, room, make_token):
    with pytest.raises(HTTPException) as exc_info:
        await get_user_from_token(make_token(room), db)
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_inactive_user_is_rejected(room):
    room.carol.is_active = False

    with pytest.raises(HTTPException) as exc_info:
        await get_current_active_user(room.carol)
    assert exc_info.value.status_code == 400
