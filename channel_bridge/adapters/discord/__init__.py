from channel_bridge.adapters.discord.handler import DiscordChannelHandler, split_message

__all__ = ["DiscordChannelHandler", "split_message"]
