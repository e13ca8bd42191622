from providers.discord import DiscordAdapter
from providers.evm import EvmAdapter
from providers.github import GitHubAdapter
from providers.google import GoogleAdapter
from providers.solana import SolanaAdapter
from providers.steam import SteamAdapter
from providers.telegram import TelegramAdapter
from providers.tiktok import TikTokAdapter
from providers.twitter import TwitterAdapter
from schemas import Provider

ADAPTERS = {
    Provider.discord: DiscordAdapter,
    Provider.twitter: TwitterAdapter,
    Provider.github: GitHubAdapter,
    Provider.google: GoogleAdapter,
    Provider.steam: SteamAdapter,
    Provider.telegram: TelegramAdapter,
    Provider.tiktok: TikTokAdapter,
    Provider.evm: EvmAdapter,
    Provider.solana: SolanaAdapter,
}


def build_registry(settings, client, policy=None):
    kwargs = {"policy": policy} if policy is not None else {}
    return {provider: cls(settings, client, **kwargs) for provider, cls in ADAPTERS.items()}
