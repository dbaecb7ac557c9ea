"""Copies comments and links of synced item pairs from source to target."""

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from work_item_sync.connectors.base import Connector
from work_item_sync.connectors.models import Comment
from work_item_sync.db.connection import session_scope
from work_item_sync.db.models import (
    LinkStatus,
    SyncedComment,
    SyncedItem,
    SyncedLink,
    to_naive_utc,
    utc_now,
)
from work_item_sync.errors import ConnectorError
from work_item_sync.utils.logging import ExecutionLog


def format_comment(comment: Comment) -> str:
    """Comment text as posted on the target, with its original author and date."""
    footer = comment.created_by or "unknown"
    if comment.created_date is not None:
        footer += f" ({comment.created_date:%Y-%m-%d %H:%M})"
    return f"[Synced from source]\n{comment.text}\n\n--- {footer}"


class RelatedContentSync:
    """Source to target copy of comments and links for one item pair.

    Each comment and link is recorded once it is written, so a re-run only
    adds what is new. A link whose linked item has no synced partner yet is
    stored as pending and retried on later runs. A failure on one comment or
    link is logged and the rest continue.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    async def sync_comments(
        self,
        synced_item_id: int,
        source_item_id: str,
        target_item_id: str,
        source: Connector,
        target: Connector,
        log: ExecutionLog,
    ) -> int:
        """Copy source comments not yet on the target.

        Returns:
            Number of comments written.
        """
        if not (source.supports_comments and target.supports_comments):
            log.info(f"Comments not supported by {source.name} or {target.name}")
            return 0

        comments = await source.get_comments(source_item_id)
        with session_scope(self.session_factory) as session:
            known = set(
                session.scalars(
                    select(SyncedComment.source_comment_id).where(
                        SyncedComment.synced_item_id == synced_item_id
                    )
                ).all()
            )

        written = 0
        for comment in comments:
            if comment.id in known:
                continue
            try:
                created = await target.add_comment(target_item_id, format_comment(comment))
            except ConnectorError as e:
                log.warning(f"Failed to sync comment {comment.id} of {source_item_id}: {e}")
                continue
            with session_scope(self.session_factory) as session:
                session.add(
                    SyncedComment(
                        synced_item_id=synced_item_id,
                        source_comment_id=comment.id,
                        target_comment_id=created.id,
                        comment_text=comment.text,
                        author=comment.created_by,
                        created_at=to_naive_utc(comment.created_date),
                    )
                )
            written += 1

        if written:
            log.info(f"Synced {written} comment(s) to work item {target_item_id}")
        return written

    async def sync_links(
        self,
        config_id: int,
        synced_item_id: int,
        source_item_id: str,
        target_item_id: str,
        source: Connector,
        target: Connector,
        log: ExecutionLog,
    ) -> int:
        """Copy source links whose linked item is synced too.

        Returns:
            Number of links written.
        """
        if not (source.supports_links and target.supports_links):
            log.info(f"Links not supported by {source.name} or {target.name}")
            return 0

        relations = await source.get_relations(source_item_id)
        linked_ids = {relation.linked_item_id for relation in relations}
        with session_scope(self.session_factory) as session:
            links = {
                (link.link_type, link.source_linked_item_id): link.status
                for link in session.scalars(
                    select(SyncedLink).where(SyncedLink.synced_item_id == synced_item_id)
                ).all()
            }
            partners = dict(
                session.execute(
                    select(SyncedItem.source_item_id, SyncedItem.target_item_id).where(
                        SyncedItem.sync_config_id == config_id,
                        SyncedItem.source_item_id.in_(linked_ids),
                    )
                ).all()
            )

        written = 0
        for relation in relations:
            key = (relation.rel, relation.linked_item_id)
            status = links.get(key)
            if status == LinkStatus.synced.value:
                continue

            partner = partners.get(relation.linked_item_id)
            if partner is None:
                if status is None:
                    self._record_link(synced_item_id, relation.rel, relation.linked_item_id, None)
                    links[key] = LinkStatus.pending.value
                    log.info(
                        f"Link {relation.rel} to {relation.linked_item_id} pending: "
                        f"linked item not synced yet"
                    )
                continue

            try:
                await target.add_relation(target_item_id, relation.rel, partner)
            except ConnectorError as e:
                log.warning(f"Failed to sync link {relation.rel} of {source_item_id}: {e}")
                continue
            self._record_link(synced_item_id, relation.rel, relation.linked_item_id, partner)
            links[key] = LinkStatus.synced.value
            written += 1

        if written:
            log.info(f"Synced {written} link(s) to work item {target_item_id}")
        return written

    def _record_link(
        self,
        synced_item_id: int,
        link_type: str,
        source_linked_item_id: str,
        target_linked_item_id: str | None,
    ) -> None:
        with session_scope(self.session_factory) as session:
            link = session.scalars(
                select(SyncedLink).where(
                    SyncedLink.synced_item_id == synced_item_id,
                    SyncedLink.link_type == link_type,
                    SyncedLink.source_linked_item_id == source_linked_item_id,
                )
            ).first()
            if link is None:
                link = SyncedLink(
                    synced_item_id=synced_item_id,
                    link_type=link_type,
                    source_linked_item_id=source_linked_item_id,
                )
                session.add(link)
            if target_linked_item_id is None:
                link.status = LinkStatus.pending.value
            else:
                link.target_linked_item_id = target_linked_item_id
                link.status = LinkStatus.synced.value
                link.synced_at = utc_now()
