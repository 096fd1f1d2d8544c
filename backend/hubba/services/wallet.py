from __future__ import annotations
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.errors import InsufficientFunds, NotFound
from hubba.models.user import User


async def debit_tokens(session: AsyncSession, *, user_id: str, tokens: int) -> int:
    """
    Debit credits from a wallet. The user row is locked for the rest of the
    transaction to prevent double-spend races across concurrent requests.
    Raises InsufficientFunds if balance is too low. Returns the new balance.
    """
    if tokens <= 0:
        raise ValueError("tokens must be > 0")
    user = await session.get(User, user_id, with_for_update=True)
    if user is None:
        raise NotFound("Wallet not found", userId=user_id)
    if user.wallet_balance < tokens:
        raise InsufficientFunds(f"Insufficient funds: need {tokens}, have {user.wallet_balance}", need=tokens, have=user.wallet_balance)
    user.wallet_balance -= int(tokens)
    return user.wallet_balance


async def credit_tokens(session: AsyncSession, *, user_id: str, tokens: int) -> int:
    """Credit a wallet (refunds, payouts). Creates the user row if absent."""
    if tokens <= 0:
        raise ValueError("tokens must be > 0")
    user = await session.get(User, user_id, with_for_update=True)
    if user is None:
        user = User(id=user_id, roles=[], wallet_balance=0)
        session.add(user)
        await session.flush()
    user.wallet_balance += int(tokens)
    return user.wallet_balance
