"""
Pytest configuration and shared fixtures.

The app module reads its configuration at import time, so DATABASE_URL is
pointed at an in-memory SQLite database before anything imports it. Every
test gets freshly created tables.
"""
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).parent.parent / 'backend'
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ.setdefault('LOG_LEVEL', 'WARNING')

from app import app as flask_app  # noqa: E402
from models import (  # noqa: E402
    db, Iteration, OrganizationUnit, Person, PersonRole, Survey, SURVEY_INDIVIDUAL
)
from voxel import analyze_results  # noqa: E402


@pytest.fixture
def app():
    flask_app.config['TESTING'] = True
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


class Builder:
    """Small helpers for building org data directly in the database"""

    def __init__(self):
        self._clock = datetime(2026, 1, 1)

    def _tick(self):
        self._clock += timedelta(days=1)
        return self._clock

    def iteration(self, name='Cycle', closed=True, question_set='questions_short.json'):
        start = self._tick()
        iteration = Iteration(name=name, question_set=question_set, start_date=start,
                              end_date=self._tick() if closed else None)
        db.session.add(iteration)
        db.session.commit()
        return iteration

    def unit(self, iteration, name, parent=None):
        unit = OrganizationUnit(name=name, iteration_id=iteration.id,
                                parent_id=parent.id if parent else None)
        db.session.add(unit)
        db.session.commit()
        return unit

    def person(self, name):
        person = Person(name=name)
        db.session.add(person)
        db.session.commit()
        return person

    def role(self, person, unit, is_manager=False, description=None):
        role = PersonRole(person_id=person.id, org_unit_id=unit.id, iteration_id=unit.iteration_id,
                          is_manager=is_manager, description=description)
        db.session.add(role)
        db.session.commit()
        return role

    def survey(self, role, results, filename='questions_short.json'):
        voxel, graphs = analyze_results(results)
        survey = Survey(person_role_id=role.id, org_unit_id=role.org_unit_id,
                        iteration_id=role.iteration_id, survey_type=SURVEY_INDIVIDUAL,
                        filename=filename, survey_results=results,
                        analysis_voxel=voxel, analysis_graphs=graphs)
        db.session.add(survey)
        db.session.commit()
        return survey


@pytest.fixture
def build(app):
    return Builder()
