from datetime import datetime, timezone

from eth_account import Account
from eth_account.messages import encode_defunct

from providers.base import days_since
from providers.wallet import RECENT_ACTIVITY_DAYS, WalletAdapter
from schemas import Provider

ETHERSCAN_URL = "https://api.etherscan.io/v2/api"
CHAIN_ID = 1
WEI_PER_ETH = 10 ** 18

MIN_BALANCE_ETH = 0.001


class EvmAdapter(WalletAdapter):
    provider = Provider.evm
    chain = "Ethereum"
    signing_scheme = "personal_sign"

    def recover_ok(self, address, signature, message):
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception:
            return False
        return recovered.lower() == address.lower()

    async def _etherscan(self, api_key, **params):
        body = await self.get_json(ETHERSCAN_URL, params={"chainid": CHAIN_ID, "apikey": api_key, **params})
        if "result" not in body or (body.get("status") == "0" and not isinstance(body["result"], list)):
            raise ValueError(body.get("message") or "Etherscan error")
        return body["result"]

    async def fetch_account(self, address, proof, session):
        account = {
            "address": address.lower(),
            "balance_eth": 0.0,
            "tx_count": 0,
            "wallet_age_days": 0,
            "recent_activity": False,
            "data_available": False,
        }
        api_key = self.settings.get("ETHERSCAN_API_KEY")
        if not api_key:
            return account

        async def balance():
            wei = await self._etherscan(api_key, module="account", action="balance", address=address, tag="latest")
            return int(wei) / WEI_PER_ETH

        async def tx_count():
            nonce = await self._etherscan(
                api_key, module="proxy", action="eth_getTransactionCount", address=address, tag="latest"
            )
            return int(nonce, 16)

        async def first_and_last():
            first = await self._etherscan(
                api_key, module="account", action="txlist", address=address,
                startblock=0, endblock=99999999, page=1, offset=1, sort="asc",
            )
            last = await self._etherscan(
                api_key, module="account", action="txlist", address=address,
                startblock=0, endblock=99999999, page=1, offset=1, sort="desc",
            )
            return (first[0] if first else None), (last[0] if last else None)

        eth = await self.lookup("balance", address, balance, None)
        if eth is not None:
            account["balance_eth"] = eth
            account["data_available"] = True
        account["tx_count"] = await self.lookup("transaction count", address, tx_count, 0)

        first, last = await self.lookup("transaction history", address, first_and_last, (None, None))
        if first:
            created = datetime.fromtimestamp(int(first["timeStamp"]), tz=timezone.utc)
            account["wallet_age_days"] = days_since(created)
        if last:
            latest = datetime.fromtimestamp(int(last["timeStamp"]), tz=timezone.utc)
            account["recent_activity"] = days_since(latest) <= RECENT_ACTIVITY_DAYS
        return account

    def check_eligibility(self, account):
        balance = account["balance_eth"]
        if account["data_available"] and 0 < balance < MIN_BALANCE_ETH:
            return [
                f"Insufficient balance: wallet must hold at least {MIN_BALANCE_ETH} ETH "
                f"(current: {balance:.6f} ETH)"
            ]
        return []
