import base64

import base58
from ecdsa import BadSignatureError, Ed25519, VerifyingKey
from ecdsa.errors import MalformedPointError

from providers.base import days_since, parse_timestamp
from providers.wallet import RECENT_ACTIVITY_DAYS, WalletAdapter
from schemas import Provider

LAMPORTS_PER_SOL = 1_000_000_000
SIGNATURE_LIMIT = 1000

MIN_BALANCE_SOL = 0.1


def decode_signature(signature):
    """Wallets hand back base58, base64 or hex encoded 64-byte signatures."""
    candidates = []
    if all(c in "0123456789abcdefABCDEF" for c in signature.removeprefix("0x")):
        candidates.append(lambda: bytes.fromhex(signature.removeprefix("0x")))
    candidates.append(lambda: base58.b58decode(signature))
    candidates.append(lambda: base64.b64decode(signature, validate=True))
    for decode in candidates:
        try:
            raw = decode()
        except ValueError:
            continue
        if len(raw) == 64:
            return raw
    return None


class SolanaAdapter(WalletAdapter):
    provider = Provider.solana
    chain = "Solana"
    signing_scheme = "ed25519"

    def recover_ok(self, address, signature, message):
        try:
            public_key = base58.b58decode(address)
        except ValueError:
            return False
        raw = decode_signature(signature)
        if len(public_key) != 32 or raw is None:
            return False
        try:
            key = VerifyingKey.from_string(public_key, curve=Ed25519)
            return key.verify(raw, message.encode("utf-8"))
        except (BadSignatureError, MalformedPointError, ValueError):
            return False

    async def _rpc(self, method, params):
        body = await self.post_json(
            self.settings.solana_rpc_url,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        if body.get("error"):
            raise ValueError(body["error"].get("message", "RPC error"))
        return body["result"]

    async def fetch_account(self, address, proof, session):
        account = {
            "address": address,
            "balance_sol": 0.0,
            "tx_count": 0,
            "wallet_age_days": 0,
            "recent_activity": False,
            "signature_verified": True,
            "data_available": False,
        }

        async def balance():
            result = await self._rpc("getBalance", [address])
            return result["value"] / LAMPORTS_PER_SOL

        async def signatures():
            return await self._rpc("getSignaturesForAddress", [address, {"limit": SIGNATURE_LIMIT}])

        sol = await self.lookup("balance", address, balance, None)
        if sol is not None:
            account["balance_sol"] = sol
            account["data_available"] = True

        history = await self.lookup("signatures", address, signatures, [])
        account["tx_count"] = len(history)
        times = [s["blockTime"] for s in history if s.get("blockTime")]
        if times:
            account["wallet_age_days"] = days_since(parse_timestamp(min(times)))
            account["recent_activity"] = days_since(parse_timestamp(max(times))) <= RECENT_ACTIVITY_DAYS
        return account

    def check_eligibility(self, account):
        balance = account["balance_sol"]
        if account["data_available"] and balance < MIN_BALANCE_SOL:
            return [
                f"Insufficient balance: wallet must hold at least {MIN_BALANCE_SOL} SOL "
                f"(current: {balance:.4f} SOL)"
            ]
        return []
