"""Tests for walking, cloning and deleting unit trees"""
from models import db, OrganizationUnit, PersonRole, Survey
from tree_utils import (
    clone_org_structure, delete_unit_tree, descendant_ids, load_children, subtree_unit_ids
)


def make_tree(build, iteration):
    """
    root
    ├── a
    │   ├── a1
    │   └── a2
    └── b
    """
    root = build.unit(iteration, 'root')
    a = build.unit(iteration, 'a', root)
    b = build.unit(iteration, 'b', root)
    a1 = build.unit(iteration, 'a1', a)
    a2 = build.unit(iteration, 'a2', a)
    return root, a, b, a1, a2


def test_descendants_include_self_and_all_children(build):
    it = build.iteration()
    root, a, b, a1, a2 = make_tree(build, it)

    assert set(subtree_unit_ids(root.id, it.id)) == {root.id, a.id, b.id, a1.id, a2.id}
    assert set(subtree_unit_ids(a.id, it.id)) == {a.id, a1.id, a2.id}
    assert subtree_unit_ids(b.id, it.id) == [b.id]


def test_descendants_exclude_other_iterations(build):
    first = build.iteration('first')
    second = build.iteration('second')
    root = build.unit(first, 'root')
    build.unit(first, 'child', root)
    # A unit of another iteration pointing into this tree is not followed
    stray = build.unit(second, 'stray', root)

    ids = subtree_unit_ids(root.id, first.id)
    assert stray.id not in ids
    assert len(ids) == 2


def test_descendants_terminate_on_cycle(build):
    it = build.iteration()
    x = build.unit(it, 'x')
    y = build.unit(it, 'y', x)
    x.parent_id = y.id
    db.session.commit()

    children = {x.id: [y.id], y.id: [x.id]}
    assert descendant_ids(x.id, children) == [x.id, y.id]


def test_load_children_treats_foreign_parent_as_root(build):
    first = build.iteration('first')
    second = build.iteration('second')
    foreign = build.unit(first, 'foreign')
    unit = build.unit(second, 'unit', foreign)

    assert load_children(second.id) == {None: [unit.id]}


def test_clone_preserves_shape_and_roles(build):
    old = build.iteration('old')
    root, a, b, a1, a2 = make_tree(build, old)
    alice = build.person('Alice')
    bob = build.person('Bob')
    build.role(alice, root, is_manager=True, description='Head')
    build.role(bob, a1)
    build.role(bob, b, is_manager=True)

    new = build.iteration('new', closed=False)
    id_map, roles_copied = clone_org_structure(old.id, new.id)
    db.session.commit()

    assert set(id_map) == {root.id, a.id, b.id, a1.id, a2.id}
    for old_unit in (root, a, b, a1, a2):
        new_unit = db.session.get(OrganizationUnit, id_map[old_unit.id])
        assert new_unit.name == old_unit.name
        assert new_unit.iteration_id == new.id
        expected_parent = id_map[old_unit.parent_id] if old_unit.parent_id else None
        assert new_unit.parent_id == expected_parent

    assert roles_copied == 3
    new_roles = PersonRole.query.filter_by(iteration_id=new.id).all()
    assert len(new_roles) == 3
    head = [r for r in new_roles if r.person_id == alice.id][0]
    assert head.org_unit_id == id_map[root.id]
    assert head.is_manager is True
    assert head.description == 'Head'
    # The old iteration is untouched
    assert PersonRole.query.filter_by(iteration_id=old.id).count() == 3


def test_delete_unit_tree_removes_subtree_roles_and_surveys(build):
    it = build.iteration()
    root, a, b, a1, a2 = make_tree(build, it)
    carol = build.person('Carol')
    dave = build.person('Dave')
    role_a1 = build.role(carol, a1)
    role_b = build.role(dave, b)
    build.survey(role_a1, [1, 2, 3])
    build.survey(role_b, [4, 5, 6])

    counts = delete_unit_tree(a.id)
    db.session.commit()

    assert counts == {'units': 3, 'roles': 1, 'surveys': 1}
    remaining = {u.id for u in OrganizationUnit.query.all()}
    assert remaining == {root.id, b.id}
    assert PersonRole.query.count() == 1
    assert Survey.query.one().person_role_id == role_b.id


def test_delete_unit_tree_unknown_unit(build):
    assert delete_unit_tree(12345) is None
