"""
Org Survey Backend - Organization Importer
==========================================

Imports an organization structure into an iteration (the active one unless
an id is given). People are matched by name and created when missing.

Run: python import_org.py org.json [iteration_id]

File layout:
    {"units": [
        {"name": "Board",
         "members": [{"name": "Alice", "is_manager": true, "description": "CEO"}],
         "children": [{"name": "Engineering", "members": [...], "children": [...]}]}
    ]}
"""

import json
import logging
import os
import sys
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from errors import NotFoundError, ValidationError
from iterations import require_active_iteration
from models import db, Iteration, OrganizationUnit, Person, PersonRole

logger = logging.getLogger(__name__)


def _get_or_create_person(name):
    person = Person.query.filter(db.func.lower(Person.name) == name.lower()).first()
    if person is None:
        person = Person(name=name)
        db.session.add(person)
        db.session.flush()
    return person


def import_org(structure, iteration_id=None):
    """
    Create the units, people and roles described by structure.
    Returns counts of created rows. Everything is committed at once.
    """
    if iteration_id is None:
        iteration = require_active_iteration()
    else:
        iteration = db.session.get(Iteration, iteration_id)
        if iteration is None:
            raise NotFoundError('Iteration not found')

    if not isinstance(structure, dict) or not isinstance(structure.get('units'), list):
        raise ValidationError("Structure must be an object with a 'units' list")

    counts = {'units': 0, 'people': 0, 'roles': 0}
    people_before = Person.query.count()

    try:
        # (parent unit id, unit entry) pairs, walked top-down
        pending = [(None, entry) for entry in structure['units']]
        while pending:
            parent_id, entry = pending.pop(0)
            if not entry.get('name'):
                raise ValidationError('Every unit needs a name')
            unit = OrganizationUnit(name=entry['name'], parent_id=parent_id, iteration_id=iteration.id)
            db.session.add(unit)
            db.session.flush()
            counts['units'] += 1

            for member in entry.get('members', []):
                person = _get_or_create_person(member['name'])
                db.session.add(PersonRole(
                    person_id=person.id,
                    org_unit_id=unit.id,
                    is_manager=bool(member.get('is_manager', False)),
                    description=member.get('description'),
                    iteration_id=iteration.id
                ))
                counts['roles'] += 1

            pending.extend((unit.id, child) for child in entry.get('children', []))

        db.session.flush()
        counts['people'] = Person.query.count() - people_before
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info('Imported into iteration %s: %s', iteration.id, counts)
    return counts


if __name__ == '__main__':
    from app import app

    if len(sys.argv) < 2:
        print('Usage: python import_org.py org.json [iteration_id]')
        sys.exit(1)

    with open(sys.argv[1], encoding='utf-8') as f:
        data = json.load(f)
    target_id = int(sys.argv[2]) if len(sys.argv) > 2 else None

    with app.app_context():
        db.create_all()
        result = import_org(data, target_id)
        print(f"Imported {result['units']} units, {result['roles']} roles, {result['people']} new people")
