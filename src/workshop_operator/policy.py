"""Argo CD RBAC policy document builder.

The policy is a line-oriented CSV with two line shapes:

    p, <role>, <resource>, <action>, <scope>, allow
    g, <subject>, <role>

Lines are kept in insertion order. Argo CD does not deduplicate grants, so the
order in which tenants are appended is part of the document's meaning and the
builder never reorders or merges lines.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

FIELD_SEPARATOR = ", "
POLICY_PREFIX = "p"
GROUP_PREFIX = "g"
EFFECT_ALLOW = "allow"


class PolicyGrammarError(ValueError):
    """Raised when a policy line does not follow the grammar."""

    pass


def _check_field(name: str, value: str) -> None:
    if not value or value != value.strip():
        raise PolicyGrammarError(
            f"Policy field '{name}' must be non-empty and unpadded: {value!r}"
        )
    if "," in value or "\n" in value:
        raise PolicyGrammarError(
            f"Policy field '{name}' must not contain ',' or newlines: {value!r}"
        )


@dataclass(frozen=True)
class PolicyRule:
    """A ``p,`` line granting ``action`` on ``resource`` within ``scope``."""

    role: str
    resource: str
    action: str
    scope: str
    effect: str = EFFECT_ALLOW

    def __post_init__(self) -> None:
        for name in ("role", "resource", "action", "scope", "effect"):
            _check_field(name, getattr(self, name))

    def render(self) -> str:
        return FIELD_SEPARATOR.join(
            (POLICY_PREFIX, self.role, self.resource, self.action, self.scope, self.effect)
        )


@dataclass(frozen=True)
class GroupBinding:
    """A ``g,`` line assigning ``subject`` to ``role``."""

    subject: str
    role: str

    def __post_init__(self) -> None:
        _check_field("subject", self.subject)
        _check_field("role", self.role)

    def render(self) -> str:
        return FIELD_SEPARATOR.join((GROUP_PREFIX, self.subject, self.role))


PolicyLine = PolicyRule | GroupBinding


def parse_line(text: str) -> PolicyLine:
    """Parse one policy line.

    Raises:
        PolicyGrammarError: If the line is neither a valid ``p,`` nor ``g,`` line.
    """
    fields = [part.strip() for part in text.split(",")]
    match fields:
        case [prefix, role, resource, action, scope, effect] if prefix == POLICY_PREFIX:
            return PolicyRule(role, resource, action, scope, effect)
        case [prefix, subject, role] if prefix == GROUP_PREFIX:
            return GroupBinding(subject, role)
        case _:
            raise PolicyGrammarError(f"Unrecognised policy line: {text!r}")


@dataclass
class PolicyDocument:
    """Ordered, append-only collection of policy lines."""

    lines: list[PolicyLine] = field(default_factory=list)

    def extend(self, lines: Iterable[PolicyLine]) -> None:
        self.lines.extend(lines)

    def render(self) -> str:
        """Render as newline-terminated text, the form stored in the ArgoCD resource."""
        return "".join(f"{line.render()}\n" for line in self.lines)

    @classmethod
    def parse(cls, text: str) -> PolicyDocument:
        """Parse rendered policy text, skipping blank lines."""
        return cls([parse_line(line) for line in text.splitlines() if line.strip()])

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self) -> Iterator[PolicyLine]:
        return iter(self.lines)


def tenant_role(tenant: str) -> str:
    return f"role:{tenant}"


def tenant_policy(
    tenant: str,
    project: str,
    *,
    cluster_server: str,
    git_server: str,
) -> list[PolicyLine]:
    """Policy fragment for one tenant: four grants and the role assignment.

    The tenant may manage applications and the AppProject inside its own
    namespace, read the in-cluster destination and use its own repositories.
    """
    role = tenant_role(tenant)
    return [
        PolicyRule(role, "applications", "*", f"{project}/*"),
        PolicyRule(role, "clusters", "get", cluster_server),
        PolicyRule(role, "projects", "*", project),
        PolicyRule(role, "repositories", "*", f"{git_server}/{tenant}/*"),
        GroupBinding(tenant, role),
    ]
