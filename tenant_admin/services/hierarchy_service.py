"""Organization hierarchy - parent index, ancestor walks and tree assembly.

The hierarchy is handled as a flat ``id -> parent_id`` index loaded in one
query. All walks are pure functions over that index with explicit visited
sets, so corrupt (cyclic) data terminates instead of looping.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, NamedTuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from tenant_admin.core.config import settings
from tenant_admin.core.errors import ErrorKind, TenantAdminError, not_found
from tenant_admin.db.models import Member, Organization

ParentIndex = dict[Hashable, Hashable | None]


class TreeItem(NamedTuple):
    id: Hashable
    parent_id: Hashable | None
    data: Any = None


@dataclass
class OrgTreeNode:
    id: Hashable
    parent_id: Hashable | None
    data: Any = None
    is_orphan: bool = False
    children: list["OrgTreeNode"] = field(default_factory=list)


@dataclass
class OrgTree:
    roots: list[OrgTreeNode]
    tree_view_available: bool = True
    total: int = 0


# =============================================================================
# Index
# =============================================================================

def load_parent_index(db: Session, include_deleted: bool = True) -> ParentIndex:
    """Map every organization id to its parent id in a single query."""
    query = db.query(Organization.id, Organization.parent_organization_id)
    if not include_deleted:
        query = query.filter(Organization.deleted_at.is_(None))
    return {org_id: parent_id for org_id, parent_id in query.all()}


def _children_index(index: ParentIndex) -> dict[Hashable, list[Hashable]]:
    children: dict[Hashable, list[Hashable]] = {}
    for node_id, parent_id in index.items():
        if parent_id is not None:
            children.setdefault(parent_id, []).append(node_id)
    return children


def ancestors(index: ParentIndex, start_id: Hashable) -> list[Hashable]:
    """
    Ancestors of ``start_id``, nearest first.

    Raises:
        TenantAdminError(CYCLE_DETECTED): the chain revisits a node
        TenantAdminError(DEPTH_EXCEEDED): the chain is longer than the walk limit
    """
    chain: list[Hashable] = []
    seen = {start_id}
    current = index.get(start_id)
    while current is not None:
        if current in seen:
            raise TenantAdminError(ErrorKind.CYCLE_DETECTED)
        if len(chain) >= settings.ORG_PARENT_WALK_LIMIT:
            raise TenantAdminError(ErrorKind.DEPTH_EXCEEDED)
        seen.add(current)
        chain.append(current)
        current = index.get(current)
    return chain


def get_depth(index: ParentIndex, org_id: Hashable) -> int:
    """Number of ancestors (root = 0)."""
    return len(ancestors(index, org_id))


def get_subtree_depth(index: ParentIndex, org_id: Hashable) -> int:
    """Depth of the deepest descendant below ``org_id`` (leaf = 0)."""
    children = _children_index(index)
    deepest = 0
    visited = {org_id}
    queue = deque([(org_id, 0)])
    while queue:
        node_id, depth = queue.popleft()
        deepest = max(deepest, depth)
        if depth >= settings.ORG_PARENT_WALK_LIMIT:
            continue
        for child_id in children.get(node_id, []):
            if child_id not in visited:
                visited.add(child_id)
                queue.append((child_id, depth + 1))
    return deepest


def descendants(index: ParentIndex, org_id: Hashable) -> set[Hashable]:
    """Breadth-first descendants; excludes ``org_id``, capped at ORG_DESCENDANT_CAP."""
    children = _children_index(index)
    found: set[Hashable] = set()
    queue = deque([org_id])
    while queue and len(found) < settings.ORG_DESCENDANT_CAP:
        node_id = queue.popleft()
        for child_id in children.get(node_id, []):
            if child_id == org_id or child_id in found:
                continue
            found.add(child_id)
            queue.append(child_id)
            if len(found) >= settings.ORG_DESCENDANT_CAP:
                break
    return found


# =============================================================================
# Validation
# =============================================================================

def _reaches(index: ParentIndex, start_id: Hashable, target_id: Hashable) -> bool:
    """True if ``target_id`` is on the parent chain above ``start_id`` (no walk limit)."""
    seen = {start_id}
    current = index.get(start_id)
    while current is not None and current not in seen:
        if current == target_id:
            return True
        seen.add(current)
        current = index.get(current)
    return False


def check_parent_assignment(
    index: ParentIndex,
    org_id: Hashable | None,
    candidate_parent_id: Hashable | None,
) -> None:
    """Pure form of validate_parent_assignment over a loaded index."""
    if candidate_parent_id is None:
        return
    if org_id is not None and org_id == candidate_parent_id:
        raise TenantAdminError(ErrorKind.CYCLE_DETECTED)
    if candidate_parent_id not in index:
        raise not_found("Organization", candidate_parent_id)

    try:
        chain = ancestors(index, candidate_parent_id)
    except TenantAdminError as exc:
        # A chain past the walk limit may still loop back through org_id.
        if (
            exc.kind == ErrorKind.DEPTH_EXCEEDED
            and org_id is not None
            and _reaches(index, candidate_parent_id, org_id)
        ):
            raise TenantAdminError(ErrorKind.CYCLE_DETECTED) from exc
        raise
    if org_id is not None and org_id in chain:
        raise TenantAdminError(ErrorKind.CYCLE_DETECTED)

    subtree = get_subtree_depth(index, org_id) if org_id is not None else 0
    if len(chain) + 1 + subtree > settings.ORG_MAX_DEPTH:
        raise TenantAdminError(
            ErrorKind.DEPTH_EXCEEDED,
            f"Organization hierarchy may not exceed {settings.ORG_MAX_DEPTH + 1} levels",
        )


def validate_parent_assignment(
    db: Session,
    org_id: UUID | None,
    candidate_parent_id: UUID | None,
) -> None:
    """
    Check that ``candidate_parent_id`` may become the parent of ``org_id``.

    ``org_id=None`` validates a new (childless) organization.

    Raises:
        TenantAdminError(NOT_FOUND): candidate parent does not exist
        TenantAdminError(CYCLE_DETECTED): candidate is the org or one of its descendants
        TenantAdminError(DEPTH_EXCEEDED): resulting tree would be too deep
    """
    check_parent_assignment(load_parent_index(db), org_id, candidate_parent_id)


def list_descendants(db: Session, org_id: UUID) -> set[UUID]:
    """All organizations below ``org_id`` (never includes ``org_id``)."""
    return descendants(load_parent_index(db), org_id)


# =============================================================================
# Tree assembly
# =============================================================================

def _cycle_members(nodes: dict[Hashable, OrgTreeNode], order: list[Hashable]) -> set[Hashable]:
    on_cycle: set[Hashable] = set()
    done: set[Hashable] = set()
    for start in order:
        path: list[Hashable] = []
        position: dict[Hashable, int] = {}
        current = start
        while current in nodes and current not in done and current not in position:
            position[current] = len(path)
            path.append(current)
            current = nodes[current].parent_id
        if current in position:
            on_cycle.update(path[position[current]:])
        done.update(path)
    return on_cycle


def build_tree(items: Iterable[Any]) -> list[OrgTreeNode]:
    """
    Assemble a forest from items exposing ``id`` and ``parent_id``.

    Items whose parent is not in the input become roots with is_orphan=True.
    Items on a parent cycle are promoted to orphan roots. Roots and children
    keep input order. Duplicate ids keep the first occurrence.
    """
    nodes: dict[Hashable, OrgTreeNode] = {}
    order: list[Hashable] = []
    for item in items:
        if item.id in nodes:
            continue
        nodes[item.id] = OrgTreeNode(id=item.id, parent_id=item.parent_id, data=item)
        order.append(item.id)

    cyclic = _cycle_members(nodes, order)

    roots: list[OrgTreeNode] = []
    for node_id in order:
        node = nodes[node_id]
        if node.parent_id is None:
            roots.append(node)
        elif node.parent_id not in nodes or node_id in cyclic:
            node.is_orphan = True
            roots.append(node)
        else:
            nodes[node.parent_id].children.append(node)
    return roots


@dataclass
class OrgTreeEntry:
    id: UUID
    parent_id: UUID | None
    name: str
    slug: str
    member_count: int


def list_organizations_for_tree(db: Session) -> OrgTree:
    """Live organizations with member counts, assembled into a forest."""
    total = (
        db.query(func.count(Organization.id))
        .filter(Organization.deleted_at.is_(None))
        .scalar()
        or 0
    )
    if total > settings.ORG_TREE_VIEW_MAX:
        return OrgTree(roots=[], tree_view_available=False, total=total)

    member_counts = dict(
        db.query(Member.organization_id, func.count(Member.id))
        .group_by(Member.organization_id)
        .all()
    )
    orgs = (
        db.query(Organization)
        .filter(Organization.deleted_at.is_(None))
        .order_by(Organization.name)
        .all()
    )
    entries = [
        OrgTreeEntry(
            id=org.id,
            parent_id=org.parent_organization_id,
            name=org.name,
            slug=org.slug,
            member_count=member_counts.get(org.id, 0),
        )
        for org in orgs
    ]
    return OrgTree(roots=build_tree(entries), total=total)
