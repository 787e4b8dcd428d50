"""Invalidate cached decisions when a user's access-relevant state changes."""

import logging

from django.contrib.auth import get_user_model
from django.db.models.signals import m2m_changed, post_delete, post_save

from .cache import DecisionCache, user_tag

logger = logging.getLogger(__name__)

_MEMBERSHIP_ACTIONS = ("post_add", "post_remove", "post_clear")


def _invalidate_user(user_id) -> None:
    DecisionCache().invalidate_on_commit(user_tag(user_id))


def user_saved(sender, instance, created, **kwargs):
    if not created:
        _invalidate_user(instance.pk)


def user_deleted(sender, instance, **kwargs):
    _invalidate_user(instance.pk)


def user_memberships_changed(sender, instance, action, reverse, pk_set, **kwargs):
    if action not in _MEMBERSHIP_ACTIONS:
        return
    if not reverse:
        _invalidate_user(instance.pk)
        return
    # Changed from the role/permission side: ``pk_set`` holds user ids.
    if pk_set:
        for user_id in pk_set:
            _invalidate_user(user_id)
    else:
        logger.debug("Membership cleared from %s %s; holders are unknown", type(instance).__name__, instance.pk)
        DecisionCache().invalidate_on_commit(everything=True)


def connect() -> None:
    User = get_user_model()
    post_save.connect(user_saved, sender=User, dispatch_uid="access_control.user_saved")
    post_delete.connect(user_deleted, sender=User, dispatch_uid="access_control.user_deleted")
    for relation in (User.roles, User.direct_permissions):
        m2m_changed.connect(
            user_memberships_changed,
            sender=relation.through,
            dispatch_uid=f"access_control.{relation.through.__name__}",
        )


__all__ = ["connect"]
