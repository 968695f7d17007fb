"""
Org Survey Backend - Organization Tree Utilities
================================================

Walks the per-iteration unit hierarchy. The whole forest of an iteration is
loaded once into an adjacency list and traversed with an explicit queue, so
depth never hits the recursion limit and a corrupt parent cycle cannot loop
forever.

Used for:
- Aggregation: the unit itself plus every transitive subordinate unit
- Cloning: copying a forest (and its roles) into a new iteration
- Cascade delete: removing a unit subtree with its roles and surveys
"""

import logging
from collections import deque

from models import db, OrganizationUnit, PersonRole, Survey

logger = logging.getLogger(__name__)


def load_children(iteration_id):
    """Return {parent_id: [child ids]} for every unit of the iteration.
    Root units are listed under the key None."""
    rows = db.session.query(OrganizationUnit.id, OrganizationUnit.parent_id).filter(
        OrganizationUnit.iteration_id == iteration_id
    ).order_by(OrganizationUnit.id).all()

    unit_ids = {unit_id for unit_id, _ in rows}
    children = {}
    for unit_id, parent_id in rows:
        # A parent outside this iteration makes the unit a root here
        if parent_id not in unit_ids:
            parent_id = None
        children.setdefault(parent_id, []).append(unit_id)
    return children


def descendant_ids(unit_id, children):
    """Breadth-first list of unit_id and all of its transitive children"""
    ordered = []
    seen = set()
    queue = deque([unit_id])
    while queue:
        current = queue.popleft()
        if current in seen:
            logger.warning('Unit %s reached twice while walking from %s, skipping', current, unit_id)
            continue
        seen.add(current)
        ordered.append(current)
        queue.extend(children.get(current, []))
    return ordered


def subtree_unit_ids(unit_id, iteration_id):
    """Unit and all subordinate units, scoped to one iteration"""
    children = load_children(iteration_id)
    return descendant_ids(unit_id, children)


def clone_org_structure(source_iteration_id, target_iteration_id):
    """
    Copy the unit forest and the role assignments of one iteration into another.

    Units are created top-down so every new child can point at its already
    flushed parent. Returns (id_map, roles_copied) where id_map maps
    old unit id -> new unit id. Does not commit.
    """
    units = {
        u.id: u for u in OrganizationUnit.query.filter_by(iteration_id=source_iteration_id).all()
    }
    children = load_children(source_iteration_id)

    id_map = {}
    queue = deque(children.get(None, []))
    while queue:
        old_id = queue.popleft()
        if old_id in id_map:
            continue
        old_unit = units[old_id]
        new_unit = OrganizationUnit(
            name=old_unit.name,
            parent_id=id_map.get(old_unit.parent_id),
            iteration_id=target_iteration_id
        )
        db.session.add(new_unit)
        db.session.flush()  # Get the ID before children reference it
        id_map[old_id] = new_unit.id
        queue.extend(children.get(old_id, []))

    roles_copied = 0
    old_roles = PersonRole.query.filter_by(iteration_id=source_iteration_id).order_by(PersonRole.id).all()
    for role in old_roles:
        new_unit_id = id_map.get(role.org_unit_id)
        if new_unit_id is None:
            continue
        db.session.add(PersonRole(
            person_id=role.person_id,
            org_unit_id=new_unit_id,
            is_manager=role.is_manager,
            description=role.description,
            iteration_id=target_iteration_id
        ))
        roles_copied += 1
    db.session.flush()

    logger.info('Cloned %d units and %d roles from iteration %s into %s',
                len(id_map), roles_copied, source_iteration_id, target_iteration_id)
    return id_map, roles_copied


def delete_unit_tree(unit_id):
    """
    Delete a unit with every subordinate unit, their roles and their surveys.

    Children go before parents, and within a unit surveys go before roles
    and roles before the unit, so no intermediate flush leaves a dangling
    foreign key. Does not commit. Returns counts of deleted rows.
    """
    unit = db.session.get(OrganizationUnit, unit_id)
    if unit is None:
        return None

    ordered = subtree_unit_ids(unit.id, unit.iteration_id)
    counts = {'units': 0, 'roles': 0, 'surveys': 0}

    for current in reversed(ordered):
        role_ids = [r.id for r in PersonRole.query.filter_by(org_unit_id=current).all()]
        if role_ids:
            counts['surveys'] += Survey.query.filter(
                Survey.person_role_id.in_(role_ids)
            ).delete(synchronize_session=False)
        counts['surveys'] += Survey.query.filter_by(org_unit_id=current).delete(synchronize_session=False)
        counts['roles'] += PersonRole.query.filter_by(org_unit_id=current).delete(synchronize_session=False)
        counts['units'] += OrganizationUnit.query.filter_by(id=current).delete(synchronize_session=False)
        db.session.flush()

    db.session.expire_all()
    logger.info('Deleted unit %s subtree: %s', unit_id, counts)
    return counts
