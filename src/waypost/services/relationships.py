# src/waypost/services/relationships.py
"""Follower relationship state machine.

Relations move ``pending -> accepted`` or ``pending -> rejected``; an accepted
relation is only ever removed. Inbound handlers stage their side effects in
the caller's transaction and return the outbox rows to announce once it
commits. Local actions commit and announce themselves.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from waypost.core.exceptions import ActivityValidationError, ActorNotFound
from waypost.core.settings import settings
from waypost.models import Actor, FollowerRelation, FollowingRelation, OutboxItem, RelationState
from waypost.schemas.activity import (
    AcceptActivity,
    Activity,
    FollowActivity,
    RejectActivity,
    UndoActivity,
    is_actor_uri,
)
from waypost.services.activities import (
    build_accept,
    build_follow,
    build_reject,
    build_undo_follow,
    reconstruct_follow,
)
from waypost.services.outbox import OutboxService

logger = logging.getLogger(__name__)

ACCEPTED = RelationState.ACCEPTED.value
PENDING = RelationState.PENDING.value
REJECTED = RelationState.REJECTED.value


def _follow_reference(follow: FollowActivity) -> dict[str, Any]:
    return reconstruct_follow(follow.actor, follow.target, follow.id)


class RelationshipStateMachine:
    """Applies Follow, Accept, Reject and Undo to the relation tables."""

    def __init__(self, outbox: OutboxService, *, auto_accept: bool | None = None) -> None:
        self.outbox = outbox
        self.auto_accept = settings.auto_accept_follows if auto_accept is None else auto_accept

    # --- lookups -------------------------------------------------------------------

    @staticmethod
    def _follower(db: Session, subject: Actor, peer_uri: str) -> FollowerRelation | None:
        return db.scalar(
            select(FollowerRelation).where(
                FollowerRelation.subject_actor_id == subject.id,
                FollowerRelation.peer_actor_uri == peer_uri,
            )
        )

    @staticmethod
    def _following(db: Session, actor: Actor, peer_uri: str) -> FollowingRelation | None:
        return db.scalar(
            select(FollowingRelation).where(
                FollowingRelation.actor_id == actor.id,
                FollowingRelation.peer_actor_uri == peer_uri,
            )
        )

    def followers(self, db: Session, actor: Actor) -> list[str]:
        """Return the URIs of accepted followers of ``actor``."""
        return list(
            db.scalars(
                select(FollowerRelation.peer_actor_uri)
                .where(
                    FollowerRelation.subject_actor_id == actor.id,
                    FollowerRelation.state == ACCEPTED,
                )
                .order_by(FollowerRelation.id)
            ).all()
        )

    def following(self, db: Session, actor: Actor) -> list[str]:
        """Return the URIs of peers that accepted a follow from ``actor``."""
        return list(
            db.scalars(
                select(FollowingRelation.peer_actor_uri)
                .where(
                    FollowingRelation.actor_id == actor.id,
                    FollowingRelation.state == ACCEPTED,
                )
                .order_by(FollowingRelation.id)
            ).all()
        )

    def pending_requests(self, db: Session, actor: Actor) -> list[FollowerRelation]:
        return list(
            db.scalars(
                select(FollowerRelation)
                .where(
                    FollowerRelation.subject_actor_id == actor.id,
                    FollowerRelation.state == PENDING,
                )
                .order_by(FollowerRelation.created_at, FollowerRelation.id)
            ).all()
        )

    # --- inbound -------------------------------------------------------------------

    def handle_follow(
        self, db: Session, recipient: Actor, follow: FollowActivity
    ) -> list[OutboxItem]:
        """Record a peer following ``recipient``; auto-accept when enabled."""
        if follow.target != recipient.actor_uri:
            raise ActivityValidationError("Follow does not target the receiving actor")

        relation = self._follower(db, recipient, follow.actor)
        if relation is None:
            state = ACCEPTED if self.auto_accept else PENDING
            db.add(
                FollowerRelation(
                    subject_actor_id=recipient.id,
                    peer_actor_uri=follow.actor,
                    state=state,
                    follow_activity_id=follow.id,
                )
            )
            db.flush()
            logger.info("%s follow from %s to %s", state.capitalize(), follow.actor, recipient.actor_uri)
            if state == ACCEPTED:
                return [self.outbox.stage(db, recipient, build_accept(recipient, _follow_reference(follow)))]
            return []

        if follow.id is not None and relation.follow_activity_id == follow.id:
            logger.debug("Ignoring duplicate Follow %s", follow.id)
            return []
        if relation.state == REJECTED:
            logger.info("Ignoring Follow from previously rejected %s", follow.actor)
            return []

        if follow.id is not None:
            relation.follow_activity_id = follow.id
        if relation.state == ACCEPTED:
            # The peer lost our Accept; answer the new Follow without a second row
            return [self.outbox.stage(db, recipient, build_accept(recipient, _follow_reference(follow)))]
        return []

    def _answered_following(
        self, db: Session, recipient: Actor, answer: AcceptActivity | RejectActivity
    ) -> FollowingRelation | None:
        follow = answer.embedded_follow()
        if follow is not None:
            if follow.actor != recipient.actor_uri:
                raise ActivityValidationError(f"{answer.type} refers to a Follow by another actor")
            if follow.target != answer.actor:
                raise ActivityValidationError(f"{answer.type} actor is not the followed actor")
        # Only the followed peer may answer; the Follow id may predate a re-follow
        relation = self._following(db, recipient, answer.actor)
        if relation is None:
            logger.info(
                "Ignoring %s from %s: no matching follow by %s",
                answer.type,
                answer.actor,
                recipient.actor_uri,
            )
        return relation

    def handle_accept(
        self, db: Session, recipient: Actor, accept: AcceptActivity
    ) -> list[OutboxItem]:
        """Mark ``recipient``'s follow of ``accept.actor`` as accepted."""
        relation = self._answered_following(db, recipient, accept)
        if relation is None:
            return []
        if relation.state == PENDING:
            relation.state = ACCEPTED
            logger.info("%s accepted follow from %s", accept.actor, recipient.actor_uri)
        elif relation.state == REJECTED:
            logger.info("Ignoring Accept from %s after rejection", accept.actor)
        return []

    def handle_reject(
        self, db: Session, recipient: Actor, reject: RejectActivity
    ) -> list[OutboxItem]:
        """Mark a pending follow rejected; an accepted one is removed."""
        relation = self._answered_following(db, recipient, reject)
        if relation is None:
            return []
        if relation.state == PENDING:
            relation.state = REJECTED
            logger.info("%s rejected follow from %s", reject.actor, recipient.actor_uri)
        elif relation.state == ACCEPTED:
            db.delete(relation)
            logger.info("%s removed %s as a follower", reject.actor, recipient.actor_uri)
        return []

    def _undone_follow(self, db: Session, recipient: Actor, undo: UndoActivity) -> tuple[str, str] | None:
        """Return ``(follower, followed)`` URIs of the Follow being undone."""
        follow = undo.embedded_follow()
        if follow is not None:
            return follow.actor, follow.target

        follow_id = undo.object_id
        if not follow_id:
            raise ActivityValidationError("Undo is missing its object")
        follower = db.scalar(
            select(FollowerRelation).where(
                FollowerRelation.subject_actor_id == recipient.id,
                FollowerRelation.follow_activity_id == follow_id,
            )
        )
        if follower is not None:
            return follower.peer_actor_uri, recipient.actor_uri
        following = db.scalar(
            select(FollowingRelation).where(
                FollowingRelation.actor_id == recipient.id,
                FollowingRelation.follow_activity_id == follow_id,
            )
        )
        if following is not None:
            return recipient.actor_uri, following.peer_actor_uri
        return None

    def handle_undo(self, db: Session, recipient: Actor, undo: UndoActivity) -> list[OutboxItem]:
        """Remove the relation named by an ``Undo{Follow}``.

        The direction is taken from the recipient: when the Follow's object is
        the recipient the peer stopped following it, when the Follow's actor is
        the recipient it stopped following the peer. With both parties local
        each inbox owner only touches its own side.
        """
        undone = self._undone_follow(db, recipient, undo)
        if undone is None:
            logger.info("Ignoring Undo %s: unknown Follow %s", undo.id, undo.object_id)
            return []
        follower_uri, followed_uri = undone
        if undo.actor != follower_uri:
            raise ActivityValidationError("Undo actor does not match the Follow actor")

        if followed_uri == recipient.actor_uri:
            removed = db.execute(
                delete(FollowerRelation).where(
                    FollowerRelation.subject_actor_id == recipient.id,
                    FollowerRelation.peer_actor_uri == follower_uri,
                )
            ).rowcount
            logger.info("%s unfollowed %s (%d removed)", follower_uri, recipient.actor_uri, removed)
        elif follower_uri == recipient.actor_uri:
            removed = db.execute(
                delete(FollowingRelation).where(
                    FollowingRelation.actor_id == recipient.id,
                    FollowingRelation.peer_actor_uri == followed_uri,
                )
            ).rowcount
            logger.info("%s stopped following %s (%d removed)", recipient.actor_uri, followed_uri, removed)
        else:
            raise ActivityValidationError("Undo does not concern the receiving actor")
        return []

    # --- local actions -------------------------------------------------------------

    async def follow(self, db: Session, actor: Actor, target_uri: str) -> OutboxItem | None:
        """Start following ``target_uri``; returns None when already following."""
        if not is_actor_uri(target_uri):
            raise ActivityValidationError("Follow target must be an absolute http(s) URI")
        if target_uri == actor.actor_uri:
            raise ActivityValidationError("An actor cannot follow itself")

        relation = self._following(db, actor, target_uri)
        if relation is not None and relation.state == ACCEPTED:
            return None

        payload = build_follow(actor, target_uri)
        if relation is None:
            db.add(
                FollowingRelation(
                    actor_id=actor.id,
                    peer_actor_uri=target_uri,
                    state=PENDING,
                    follow_activity_id=payload["id"],
                )
            )
        else:
            relation.state = PENDING
            relation.follow_activity_id = payload["id"]
        item = self.outbox.stage(db, actor, payload)
        await self.outbox.commit_and_notify(db, [item])
        return item

    async def unfollow(self, db: Session, actor: Actor, target_uri: str) -> OutboxItem:
        """Send ``Undo{Follow}``; the relation is removed once it is delivered.

        Raises:
            ActorNotFound: If ``actor`` does not follow ``target_uri``.
        """
        relation = self._following(db, actor, target_uri)
        if relation is None:
            raise ActorNotFound("Not following this actor")
        follow = reconstruct_follow(actor.actor_uri, target_uri, relation.follow_activity_id)
        item = self.outbox.stage(db, actor, build_undo_follow(actor, follow))
        await self.outbox.commit_and_notify(db, [item])
        return item

    def _pending_follower(self, db: Session, actor: Actor, peer_uri: str) -> FollowerRelation:
        relation = self._follower(db, actor, peer_uri)
        if relation is None:
            raise ActorNotFound("No follow request from this actor")
        if relation.state != PENDING:
            raise ActivityValidationError(f"Follow request is already {relation.state}")
        return relation

    async def accept_follower(self, db: Session, actor: Actor, peer_uri: str) -> OutboxItem:
        relation = self._pending_follower(db, actor, peer_uri)
        relation.state = ACCEPTED
        follow = reconstruct_follow(peer_uri, actor.actor_uri, relation.follow_activity_id)
        item = self.outbox.stage(db, actor, build_accept(actor, follow))
        await self.outbox.commit_and_notify(db, [item])
        return item

    async def reject_follower(self, db: Session, actor: Actor, peer_uri: str) -> OutboxItem:
        relation = self._pending_follower(db, actor, peer_uri)
        relation.state = REJECTED
        follow = reconstruct_follow(peer_uri, actor.actor_uri, relation.follow_activity_id)
        item = self.outbox.stage(db, actor, build_reject(actor, follow))
        await self.outbox.commit_and_notify(db, [item])
        return item

    # --- delivery feedback ---------------------------------------------------------

    def apply_delivery_result(
        self,
        db: Session,
        owner: Actor,
        activity: Activity,
        target_uri: str,
        delivered: bool,
    ) -> None:
        """Finish local bookkeeping once a directed activity reached ``target_uri``.

        An ``Undo{Follow}`` only drops the following relation after the peer
        received it; a failed delivery leaves the relation in place.
        """
        if not isinstance(activity, UndoActivity) or activity.object_type not in (None, "Follow"):
            return
        try:
            undone = self._undone_follow(db, owner, activity)
        except ActivityValidationError as exc:
            logger.warning("Cannot apply delivery of %s: %s", activity.id, exc)
            return
        if undone is None or undone != (owner.actor_uri, target_uri):
            return

        if not delivered:
            logger.warning(
                "Undo %s to %s was not delivered; keeping follow relation",
                activity.id,
                target_uri,
            )
            return
        db.execute(
            delete(FollowingRelation).where(
                FollowingRelation.actor_id == owner.id,
                FollowingRelation.peer_actor_uri == target_uri,
            )
        )
        logger.info("%s no longer follows %s", owner.actor_uri, target_uri)
