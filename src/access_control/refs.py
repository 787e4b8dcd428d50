"""Canonical references to permissions and roles.

Callers may pass ids, names or model instances; they are normalized once at
the boundary into ``ById``/``ByName`` and then resolved to model rows.
"""

from dataclasses import dataclass
from typing import Iterable, Union

from .conf import access_settings
from .exceptions import NotFoundError, ValidationError
from .models import Permission, Role


@dataclass(frozen=True)
class ById:
    id: int


@dataclass(frozen=True)
class ByName:
    name: str


Ref = Union[ById, ByName]


def to_ref(value, model=None) -> Ref:
    """Normalize an id, name, model instance or existing ref."""
    if isinstance(value, (ById, ByName)):
        return value
    if model is not None and isinstance(value, model):
        return ById(value.pk)
    if isinstance(value, bool):
        raise ValidationError.for_field("refs", f"Invalid reference: {value!r}")
    if isinstance(value, int):
        return ById(value)
    if isinstance(value, str):
        name = value.strip()
        if not name:
            raise ValidationError.for_field("refs", "Reference name must not be blank.")
        return ByName(name)
    raise ValidationError.for_field("refs", f"Invalid reference: {value!r}")


def resolve_permissions(values: Iterable, guard_name: str | None = None) -> list[Permission]:
    """Resolve permission refs; names are created on demand, ids must exist."""
    guard = guard_name or access_settings.DEFAULT_GUARD
    resolved: dict[int, Permission] = {}
    for ref in (to_ref(value, Permission) for value in values):
        if isinstance(ref, ById):
            try:
                permission = Permission.objects.get(pk=ref.id)
            except Permission.DoesNotExist as exc:
                raise NotFoundError(f"Permission {ref.id} does not exist.") from exc
        else:
            permission, _ = Permission.objects.get_or_create(name=ref.name, guard_name=guard)
        resolved[permission.pk] = permission
    return list(resolved.values())


def resolve_roles(values: Iterable, guard_name: str | None = None, create: bool = True) -> list[Role]:
    """Resolve role refs; unknown names are created unless ``create`` is False."""
    guard = guard_name or access_settings.DEFAULT_GUARD
    resolved: dict[int, Role] = {}
    for ref in (to_ref(value, Role) for value in values):
        if isinstance(ref, ById):
            try:
                role = Role.objects.get(pk=ref.id)
            except Role.DoesNotExist as exc:
                raise NotFoundError(f"Role {ref.id} does not exist.") from exc
        elif create:
            role, _ = Role.objects.get_or_create(name=ref.name, guard_name=guard)
        else:
            role = Role.objects.filter(name=ref.name, guard_name=guard).first()
            if role is None:
                raise NotFoundError(f"Role '{ref.name}' does not exist.")
        resolved[role.pk] = role
    return list(resolved.values())


__all__ = ["ById", "ByName", "Ref", "to_ref", "resolve_permissions", "resolve_roles"]
