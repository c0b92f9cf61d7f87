"""Notification channel: prompts out, action-selected events in.

The bridge talks to `NotificationChannel` / `ActorContext`; `DiscordChannel`
implements both directions on a discord.py gateway client.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol
from uuid import uuid4

import discord
from pydantic import BaseModel, Field

from devicegate.common.errors import PublishError
from devicegate.common.logging import logger
from devicegate.common.tracing import tracer


class PromptAction(BaseModel):
    """One labeled control on a prompt; `token` comes back on selection."""

    token: str
    label: str
    style: str = "secondary"


class Prompt(BaseModel):
    """Structured notification with a title, description and two actions."""

    title: str
    description: str
    color: int = 0x3498DB
    actions: list[PromptAction] = Field(min_length=2, max_length=2)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ActorContext(Protocol):
    actor_id: str

    async def reply(self, text: str, private: bool = True) -> None: ...

    async def dismiss(self) -> None: ...


@dataclass
class ActionSelected:
    """Inbound "action selected" event correlated by `token`."""

    token: str
    actor: ActorContext
    event_id: str = field(default_factory=lambda: str(uuid4()))


class NotificationChannel(Protocol):
    async def publish(self, prompt: Prompt) -> str: ...


BUTTON_STYLES = {
    "primary": discord.ButtonStyle.primary,
    "secondary": discord.ButtonStyle.secondary,
    "success": discord.ButtonStyle.success,
    "danger": discord.ButtonStyle.danger,
}


class DiscordActor:
    """Reply capability for the operator who clicked a button."""

    def __init__(self, interaction: discord.Interaction) -> None:
        self.interaction = interaction
        self.actor_id = str(interaction.user.id)
        self.display_name = str(interaction.user)

    async def reply(self, text: str, private: bool = True) -> None:
        if self.interaction.response.is_done():
            await self.interaction.followup.send(text, ephemeral=private)
        else:
            await self.interaction.response.send_message(text, ephemeral=private)

    async def dismiss(self) -> None:
        """Remove the deferred "thinking" response without answering."""

        if self.interaction.response.is_done():
            await self.interaction.delete_original_response()


class _GatewayClient(discord.Client):
    def __init__(self, owner: "DiscordChannel", **kwargs) -> None:
        super().__init__(**kwargs)
        self._owner = owner

    async def on_ready(self) -> None:
        await self._owner.handle_ready()

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        await self._owner.handle_interaction(interaction)


class DiscordChannel:
    """Publishes prompts to one text channel and relays button clicks."""

    def __init__(
        self,
        token: str,
        channel_id: int,
        on_action: Callable[[ActionSelected], None] | None = None,
        on_ready: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.guild_messages = True
        self.client = _GatewayClient(self, intents=intents)
        self.token = token
        self.channel_id = channel_id
        self.on_action = on_action
        self.on_ready = on_ready

    @property
    def ready(self) -> bool:
        return self.client.is_ready()

    async def start(self) -> None:
        """Log in and run the gateway connection until closed."""

        await self.client.start(self.token)

    async def close(self) -> None:
        await self.client.close()

    async def _resolve_destination(self):
        destination = self.client.get_channel(self.channel_id)
        if destination is None:
            try:
                destination = await self.client.fetch_channel(self.channel_id)
            except discord.HTTPException as exc:
                raise PublishError(f"channel {self.channel_id} not found: {exc}") from exc
        if not isinstance(destination, discord.abc.Messageable):
            raise PublishError(f"channel {self.channel_id} cannot receive messages")
        return destination

    async def publish(self, prompt: Prompt) -> str:
        """Send one embed with two buttons; raises `PublishError` on failure."""

        with tracer.start_as_current_span("discord.publish"):
            destination = await self._resolve_destination()
            embed = discord.Embed(
                title=prompt.title,
                description=prompt.description,
                colour=prompt.color,
                timestamp=prompt.created_at,
            )
            view = discord.ui.View(timeout=None)
            for action in prompt.actions:
                view.add_item(
                    discord.ui.Button(
                        label=action.label,
                        style=BUTTON_STYLES.get(action.style, discord.ButtonStyle.secondary),
                        custom_id=action.token,
                    )
                )
            try:
                message = await destination.send(embed=embed, view=view)
            except discord.HTTPException as exc:
                raise PublishError(f"send to channel {self.channel_id} failed: {exc}") from exc
            finally:
                # Clicks are routed through on_interaction, not view callbacks.
                view.stop()
            return str(message.id)

    async def handle_ready(self) -> None:
        logger.info("discord_ready user=%s", self.client.user)
        if self.on_ready is not None:
            await self.on_ready()

    async def handle_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        token = (interaction.data or {}).get("custom_id")
        if not token:
            return
        try:
            await interaction.response.defer(ephemeral=True, thinking=True)
        except discord.HTTPException as exc:
            logger.warning("interaction_defer_failed token=%s error=%s", token, exc)
        if self.on_action is not None:
            self.on_action(ActionSelected(token=token, actor=DiscordActor(interaction)))
