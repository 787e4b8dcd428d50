"""Immutable snapshot of an authenticated principal's roles and permissions."""

from dataclasses import dataclass, field
from typing import Any

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError

from .models import Permission, Role


@dataclass(frozen=True)
class Principal:
    """What the engine needs to know about a user, loaded once per check.

    ``permission_ids`` is the flattened set: direct grants plus everything
    inherited from held roles.
    """

    id: str
    role_ids: frozenset = frozenset()
    role_names: frozenset = frozenset()
    permission_ids: frozenset = frozenset()
    permission_names: frozenset = frozenset()
    is_superuser: bool = False
    attributes: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_user(cls, user) -> "Principal":
        roles = list(Role.objects.filter(users=user).values_list("id", "name"))
        permissions = list(
            Permission.objects.filter(pk__in=_permission_ids_for(user)).values_list("id", "name")
        )
        attributes = {
            "id": str(user.pk),
            "email": getattr(user, "email", None),
            "first_name": getattr(user, "first_name", None),
            "last_name": getattr(user, "last_name", None),
            "is_staff": getattr(user, "is_staff", False),
            "is_active": getattr(user, "is_active", False),
            "date_joined": getattr(user, "date_joined", None),
        }
        attributes.update(getattr(user, "attributes", None) or {})
        return cls(
            id=str(user.pk),
            role_ids=frozenset(pk for pk, _ in roles),
            role_names=frozenset(name for _, name in roles),
            permission_ids=frozenset(pk for pk, _ in permissions),
            permission_names=frozenset(name for _, name in permissions),
            is_superuser=bool(getattr(user, "is_superuser", False)),
            attributes=attributes,
        )

    def has_role(self, name: str) -> bool:
        return name in self.role_names


def _permission_ids_for(user) -> set[int]:
    direct = Permission.objects.filter(users=user).values_list("id", flat=True)
    inherited = Permission.objects.filter(roles__users=user).values_list("id", flat=True)
    return set(direct) | set(inherited)


def load_principal(subject) -> Principal | None:
    """Build a snapshot from a user instance, a user id, or a snapshot.

    Returns None for anonymous users, unknown ids and inactive users; the
    engine turns that into a denial instead of an exception.
    """
    if subject is None:
        return None
    if isinstance(subject, Principal):
        return subject
    User = get_user_model()
    if isinstance(subject, User):
        user = subject
    elif getattr(subject, "is_authenticated", None) is False:
        return None
    else:
        try:
            user = User.objects.get(pk=subject)
        except (User.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            return None
    if not getattr(user, "is_active", False):
        return None
    return Principal.from_user(user)


__all__ = ["Principal", "load_principal"]
