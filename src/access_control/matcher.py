"""Pattern Matcher: resolve a concrete (url, method) to a registered resource.

Resolution order:

1. exact ``(url, method)`` match among active resources (unique index);
2. otherwise every active resource for the method whose pattern matches.

When several patterns match, the winner is the one with the highest
``priority``, then the fewest placeholders, then the lowest id (registered
first). This order is security relevant: ``/users/active`` must not be
shadowed by ``/users/{id}`` unless an administrator raises the latter's
priority.
"""

from .exceptions import ResourceUnresolved, persistence_guard
from .models import Resource
from .patterns import compile_pattern, has_placeholders, normalize_method, normalize_url, placeholder_count


def specificity_key(resource: Resource) -> tuple:
    return (-resource.priority, placeholder_count(resource.pattern), resource.pk)


class PatternMatcher:
    """Stateless resolver over the active resources in the database."""

    def resolve(self, url: str, method: str) -> Resource | None:
        """Return the best matching active resource, or None."""
        url = normalize_url(url)
        method = normalize_method(method)
        with persistence_guard():
            active = Resource.objects.filter(method=method, is_active=True).prefetch_related(
                "permissions", "roles"
            )
            exact = active.filter(pattern=url).first()
            if exact is not None:
                return exact
            candidates = [
                resource
                for resource in active.order_by("id")
                if has_placeholders(resource.pattern) and compile_pattern(resource.pattern).match(url)
            ]
        if not candidates:
            return None
        return min(candidates, key=specificity_key)

    def require(self, url: str, method: str) -> Resource:
        """Like ``resolve`` but raises ResourceUnresolved on a miss."""
        resource = self.resolve(url, method)
        if resource is None:
            raise ResourceUnresolved(normalize_url(url), str(method).upper())
        return resource


__all__ = ["PatternMatcher", "specificity_key"]
