from solders.pubkey import Pubkey

from streams.entities import (
    CompiledInstruction,
    FilterResult,
    Rejection,
    TokenBalanceEntry,
)


DISCRIMINATOR_LENGTH = 8


def match_discriminator(data: bytes, discriminators: list[bytes]) -> bool:
    """
    Check whether instruction data starts with a known discriminator.

    Parameters
    ----------
    data : bytes
        Raw instruction data
    discriminators : list[bytes]
        Known 8-byte discriminators

    Returns
    -------
    bool
        True if the first 8 bytes equal one of the discriminators
    """
    if not data:
        return False
    prefix = data[:DISCRIMINATOR_LENGTH]
    return any(bytes(discriminator) == prefix for discriminator in discriminators)


def matches_program(
    instructions: list[CompiledInstruction],
    log_messages: list[str],
    discriminators: list[bytes],
    meta_logs: list[str]
) -> bool:
    """
    Verify a transaction was emitted by the monitored program.

    Parameters
    ----------
    instructions : list[CompiledInstruction]
        Compiled instructions of the transaction (may be empty)
    log_messages : list[str]
        Log lines of the transaction
    discriminators : list[bytes]
        Known instruction discriminators
    meta_logs : list[str]
        Known literal log lines

    Returns
    -------
    bool
        True on a discriminator match or a literal log line match
    """
    if any(match_discriminator(ix.data, discriminators) for ix in instructions):
        return True
    return any(line in log_messages for line in meta_logs)


def select_token_balances(
    pre_balances: list[TokenBalanceEntry] | None,
    post_balances: list[TokenBalanceEntry] | None
) -> list[TokenBalanceEntry]:
    """Pre-state balances when present, post-state otherwise."""
    if pre_balances:
        return pre_balances
    return post_balances or []


def _last_non_native(balances: list[TokenBalanceEntry], native_mint: str) -> str | None:
    found = None
    for balance in balances:
        if balance.mint != native_mint:
            found = balance.mint
    return found


def extract_mint(balances: list[TokenBalanceEntry], native_mint: str) -> str | None:
    """
    Pick the newly created mint out of a token balance list.

    Creation transactions usually carry exactly two balances (the new
    token and wrapped SOL), which is handled first. Any other shape falls
    back to the last non-native mint in list order, which is a position
    based guess when several non-native mints are present.

    Parameters
    ----------
    balances : list[TokenBalanceEntry]
        Token balances of the transaction
    native_mint : str
        Wrapped native currency mint

    Returns
    -------
    str | None
        Extracted mint or None when no candidate qualifies
    """
    if len(balances) == 2:
        first, second = balances[0].mint, balances[1].mint
        if first == native_mint:
            return None if second == native_mint else second
        if second == native_mint:
            return first
    return _last_non_native(balances, native_mint)


def extract_mint_from_account_keys(account_keys: list[str], mint_index: int) -> str | None:
    """
    Read the mint from its fixed position in the account key list.

    Parameters
    ----------
    account_keys : list[str]
        Base58 account keys of the transaction message
    mint_index : int
        Position of the mint in the list

    Returns
    -------
    str | None
        Account key at the position or None when out of range
    """
    if mint_index < 0 or mint_index >= len(account_keys):
        return None
    return account_keys[mint_index]


def normalize_mint(address: str) -> FilterResult:
    """
    Validate a mint address and return its canonical base58 form.

    Parameters
    ----------
    address : str
        Candidate mint address

    Returns
    -------
    FilterResult
        Accepted canonical address or an ``invalid_mint`` rejection
    """
    try:
        return FilterResult.accept(str(Pubkey.from_string(address)))
    except ValueError as e:
        return FilterResult.reject(Rejection.INVALID_MINT, str(e))
