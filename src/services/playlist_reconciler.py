"""Playlist reconciliation for freshly persisted records.

Finds or creates each named playlist and makes the record a member at the
requested position. Running the same reconciliation twice changes nothing
the second time.
"""

import logging
from typing import Optional

from models.generation import GenerationRequest, PlaylistAction, PlaylistLinkResult
from services.content_store import ContentStore

logger = logging.getLogger(__name__)


class PlaylistReconciler:
    """Links records to playlists by name through a ContentStore."""

    def __init__(self, store: ContentStore):
        self.store = store

    async def ensure(self, name: str, category_id: Optional[str]) -> Optional[str]:
        """Find a playlist by exact (case-insensitive) name, or create it.

        A reused playlist gains category_id if it was not associated yet.

        Returns:
            Playlist id, or None if both lookup and creation failed
        """
        clean_name = name.strip()
        wanted = clean_name.casefold()

        try:
            candidates = await self.store.find_playlists(clean_name)
        except Exception as e:
            logger.warning(f"Playlist lookup failed for '{clean_name}': {e}")
            candidates = []

        for playlist in candidates:
            if playlist["name"].strip().casefold() != wanted:
                continue
            playlist_id = playlist["id"]
            if category_id and category_id not in playlist.get("category_ids", []):
                try:
                    await self.store.add_playlist_category(playlist_id, category_id)
                    logger.info(f"Added category {category_id} to playlist '{clean_name}'")
                except Exception as e:
                    logger.warning(f"Could not add category to playlist '{clean_name}': {e}")
            return playlist_id

        try:
            return await self.store.create_playlist(clean_name, category_id)
        except Exception as e:
            logger.error(f"Could not create playlist '{clean_name}': {e}")
            return None

    async def link(
        self,
        playlist_id: str,
        record_id: str,
        desired_position: Optional[int],
    ) -> tuple[PlaylistAction, Optional[int]]:
        """Make record_id a member of playlist_id.

        Returns:
            (action, position). Position is the one now stored, or None.
        """
        try:
            existing = await self.store.get_membership(playlist_id, record_id)
            if existing is None:
                await self.store.insert_membership(playlist_id, record_id, desired_position)
                return PlaylistAction.INSERTED, desired_position

            current = existing.get("position")
            if desired_position is not None and current != desired_position:
                await self.store.update_membership_position(playlist_id, record_id, desired_position)
                return PlaylistAction.UPDATED, desired_position

            return PlaylistAction.NOOP, current
        except Exception as e:
            logger.warning(f"Linking record {record_id} to playlist {playlist_id} failed: {e}")
            return PlaylistAction.SKIPPED, None

    async def reconcile(self, record_id: str, request: GenerationRequest) -> list[PlaylistLinkResult]:
        """Link the record to every playlist named in the request.

        One playlist failing never stops the others.
        """
        results = []
        for name in request.playlist_names:
            playlist_id = await self.ensure(name, request.category_id or None)
            if playlist_id is None:
                results.append(
                    PlaylistLinkResult(
                        playlist_name=name,
                        playlist_id=None,
                        action=PlaylistAction.SKIPPED,
                        error="playlist could not be found or created",
                    )
                )
                continue

            action, position = await self.link(playlist_id, record_id, request.position_for(name))
            results.append(
                PlaylistLinkResult(
                    playlist_name=name,
                    playlist_id=playlist_id,
                    action=action,
                    position=position,
                    error="membership could not be written" if action == PlaylistAction.SKIPPED else None,
                )
            )
            logger.info(f"Playlist '{name}': {action.value} (position {position})")
        return results
