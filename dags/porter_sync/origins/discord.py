"""
Discord guild ("server") backup through the bot API.

Pulls members, text channels, threads and every message of every channel
into discord_* tables. A 429 carries both a Retry-After header and a
``retry_after`` JSON field, which the pull client honours.

Needs ``token`` (bot token) and ``guild_id`` in the run's extra config.
"""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List

from porter_sync.bridge import PullCursor
from porter_sync.origins.registry import register
from porter_sync.reporting import log_storage, peak_memory

if TYPE_CHECKING:
    from porter_sync.pipeline import Pipeline

LOG = logging.getLogger(__name__)

# 1/50 s between per-channel requests keeps us under the global limit
PACING_SECONDS = 0.02
MESSAGES_PER_PAGE = 100
MEMBERS_PER_PAGE = 1000

USERS_TABLE = "discord_users"
CHANNELS_TABLE = "discord_channels"
MESSAGES_TABLE = "discord_messages"

USERS_STRUCTURE = {
    "id": "varchar(100)",
    "username": "varchar(100)",
    "discriminator": "varchar(100)",
    "global_name": "varchar(100)",
    "email": "varchar(100)",
    "avatar": "varchar(100)",
    "bot": "boolean",
    "verified": "boolean",
    "keys": {"primary": {"type": "primary", "columns": ["id"]}},
}

# Member objects wrap the user one level down.
MEMBER_FIELDS = {
    "user": {
        "id": "id",
        "username": "username",
        "discriminator": "discriminator",
        "global_name": "global_name",
        "email": "email",
        "avatar": "avatar",
        "bot": "bot",
        "verified": "verified",
    },
}

CHANNELS_STRUCTURE = {
    "id": "varchar(100)",
    "type": "int",
    "guild_id": "varchar(100)",
    "position": "varchar(100)",
    "name": "text",
    "topic": "text",
    "last_message_id": "varchar(100)",
    "parent_id": "varchar(100)",
    "message_count": "int",
    # threads only
    "owner_id": "varchar(100)",
    "member_count": "int",
    "thread_metadata": "text",
    "keys": {"type_ix": {"type": "index", "columns": ["type"]}},
}

MESSAGES_STRUCTURE = {
    "id": "varchar(100)",
    "channel_id": "varchar(100)",
    "content": "text",
    "timestamp": "timestamptz",
    "edited_timestamp": "timestamptz",
    "pinned": "boolean",
    "type": "int",
    # objects, stored as JSON text
    "referenced_message": "text",
    "message_reference": "text",
    "thread": "text",
    "author": "text",
    "poll": "text",
    # lists of objects
    "attachments": "text",
    "embeds": "text",
    "reactions": "text",
    "sticker_items": "text",
    "mentions": "text",
    "mention_roles": "text",
    "mention_channels": "text",
    "keys": {"channel_ix": {"type": "index", "columns": ["channel_id"]}},
}


@register
class DiscordOrigin:
    """'Channel' covers threads too; text channels are pulled first so threads can be found per channel."""

    name = "discord"
    supported_features = {"users": True, "channels": True, "threads": True, "messages": True}

    def run(self, pipeline: "Pipeline") -> None:
        extra = pipeline.extra
        try:
            token, guild_id = extra["token"], extra["guild_id"]
        except KeyError as e:
            raise ValueError(f"discord origin needs {e.args[0]!r} in its extra config") from None

        pipeline.origin.set_header("Authorization", f"Bot {token}")
        self.users(pipeline, guild_id)
        self.text_channels(pipeline, guild_id)
        channel_ids = self.channel_ids(pipeline)  # before threads are added
        self.active_threads(pipeline, guild_id)
        self.archived_threads(pipeline, channel_ids)
        self.messages(pipeline, self.channel_ids(pipeline))

    # ------------------------ Resources ------------------------

    def users(self, pipeline: "Pipeline", guild_id: str) -> Dict[str, Any]:
        return pipeline.bridge.pull(
            f"guilds/{guild_id}/members", USERS_STRUCTURE, USERS_TABLE,
            query={"limit": str(MEMBERS_PER_PAGE)}, field_map=MEMBER_FIELDS,
        )

    def text_channels(self, pipeline: "Pipeline", guild_id: str) -> Dict[str, Any]:
        return pipeline.bridge.pull(f"guilds/{guild_id}/channels", CHANNELS_STRUCTURE, CHANNELS_TABLE)

    def active_threads(self, pipeline: "Pipeline", guild_id: str) -> Dict[str, Any]:
        return pipeline.bridge.pull(
            f"guilds/{guild_id}/threads/active", CHANNELS_STRUCTURE, CHANNELS_TABLE, response_key="threads",
        )

    def archived_threads(self, pipeline: "Pipeline", channel_ids: List[str]) -> None:
        for channel_id in channel_ids:
            pipeline.bridge.pull(
                f"channels/{channel_id}/threads/archived/public", CHANNELS_STRUCTURE, CHANNELS_TABLE,
                response_key="threads",
            )
            pipeline.cancel.sleep(PACING_SECONDS)

    def messages(self, pipeline: "Pipeline", channel_ids: List[str]) -> int:
        """Page each channel backwards (newest first) with `before` until a page comes back empty."""
        total = 0
        for channel_id in channel_ids:
            query: Dict[str, str] = {"limit": str(MESSAGES_PER_PAGE)}
            while True:
                info = pipeline.bridge.pull(f"channels/{channel_id}/messages", MESSAGES_STRUCTURE,
                                            MESSAGES_TABLE, query=dict(query))
                cursor = PullCursor.from_info(info)
                pipeline.cancel.sleep(PACING_SECONDS)
                if cursor.exhausted or cursor.last_id is None:
                    break
                total += cursor.rows
                query["before"] = str(cursor.last_id)
        pipeline.log.info("discord: %s message(s) pulled from %d channel(s)", f"{total:,}", len(channel_ids))
        return total

    # ------------------------ Helpers ------------------------

    def channel_ids(self, pipeline: "Pipeline") -> List[str]:
        t0 = time.perf_counter()
        ids = [str(i) for i in pipeline.writer.select_column(CHANNELS_TABLE, "id")]
        log_storage(pipeline.log, "get", CHANNELS_TABLE, time.perf_counter() - t0, len(ids), peak_memory())
        return ids
