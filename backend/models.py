"""
Org Survey Backend - Database Models
====================================
Last Updated: October 19, 2026

This file defines all database tables for the org survey system:
- Iteration: One survey cycle (at most one open at a time)
- OrganizationUnit: A node in the per-iteration management hierarchy
- Person: A person, global across iterations
- PersonRole: A person's assignment to a unit within one iteration
- Survey: Individual responses and calculated (aggregated) unit results
- AppData: Typed key/value settings (e.g. the organizational target)

NOTES:
- Every unit, role and survey belongs to exactly one iteration
- organization_units.parent_id points at a unit of the same iteration
- An individual survey is unique per person_role_id,
  a calculated survey is unique per org_unit_id
- Only one iteration may have end_date = NULL (partial unique index)
"""

from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

SURVEY_INDIVIDUAL = 'individual'
SURVEY_CALCULATED = 'calculated'

# Settings that may be stored in app_data
SETTING_TARGET = 'target'
KNOWN_SETTINGS = (SETTING_TARGET,)


class Iteration(db.Model):
    """
    A survey cycle. Open while end_date is NULL, closed once stamped.
    """
    __tablename__ = 'iterations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    question_set = db.Column(db.String(200), nullable=True)  # One of the allowed question files

    start_date = db.Column(db.DateTime, default=datetime.utcnow)
    end_date = db.Column(db.DateTime, nullable=True)  # NULL = active

    @property
    def is_open(self):
        return self.end_date is None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'question_set': self.question_set,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'is_open': self.is_open,
        }


# At most one open iteration, enforced by the store
db.Index(
    'uq_iterations_one_open',
    Iteration.end_date.is_(None),
    unique=True,
    sqlite_where=Iteration.end_date.is_(None),
    postgresql_where=Iteration.end_date.is_(None),
)


class OrganizationUnit(db.Model):
    """
    A node in the management hierarchy of one iteration.
    Units with parent_id = NULL are roots.
    """
    __tablename__ = 'organization_units'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey('organization_units.id'), nullable=True)
    iteration_id = db.Column(db.Integer, db.ForeignKey('iterations.id'), nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'parent_id': self.parent_id,
            'iteration_id': self.iteration_id,
        }


class Person(db.Model):
    """
    A person. Identity is global across iterations; login is by name.
    """
    __tablename__ = 'people'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class PersonRole(db.Model):
    """
    A person's assignment (manager or contributor) to a unit within an iteration.
    """
    __tablename__ = 'person_roles'
    __table_args__ = (
        db.UniqueConstraint('person_id', 'org_unit_id', 'is_manager', 'iteration_id',
                            name='uq_person_roles_assignment'),
    )

    id = db.Column(db.Integer, primary_key=True)
    person_id = db.Column(db.Integer, db.ForeignKey('people.id'), nullable=False)
    org_unit_id = db.Column(db.Integer, db.ForeignKey('organization_units.id'), nullable=False)
    iteration_id = db.Column(db.Integer, db.ForeignKey('iterations.id'), nullable=False, index=True)

    is_manager = db.Column(db.Boolean, default=False, nullable=False)
    description = db.Column(db.Text, nullable=True)  # Free text, e.g. job title

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    person = db.relationship('Person')
    org_unit = db.relationship('OrganizationUnit')
    iteration = db.relationship('Iteration')

    def to_dict(self, expand=False):
        result = {
            'id': self.id,
            'person_id': self.person_id,
            'org_unit_id': self.org_unit_id,
            'iteration_id': self.iteration_id,
            'is_manager': self.is_manager,
            'description': self.description,
        }
        if expand:
            result['organization_unit'] = {'name': self.org_unit.name} if self.org_unit else None
            result['iteration'] = {
                'id': self.iteration.id,
                'name': self.iteration.name,
                'start_date': self.iteration.start_date.isoformat() if self.iteration.start_date else None,
                'question_set': self.iteration.question_set,
            } if self.iteration else None
        return result


class Survey(db.Model):
    """
    Survey results. 'individual' rows hold one person-role's answers,
    'calculated' rows hold the averaged result for a unit and its subtree.
    """
    __tablename__ = 'surveys'

    id = db.Column(db.Integer, primary_key=True)
    person_role_id = db.Column(db.Integer, db.ForeignKey('person_roles.id'), nullable=True)
    org_unit_id = db.Column(db.Integer, db.ForeignKey('organization_units.id'), nullable=True)
    iteration_id = db.Column(db.Integer, db.ForeignKey('iterations.id'), nullable=False, index=True)

    survey_type = db.Column(db.String(20), nullable=False, default=SURVEY_INDIVIDUAL)
    filename = db.Column(db.String(300), nullable=True)  # Question set, or generated name

    # Analysis payloads
    survey_results = db.Column(db.JSON, nullable=False)  # Ordered list of numbers
    analysis_voxel = db.Column(db.JSON, nullable=True)
    analysis_graphs = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    person_role = db.relationship('PersonRole')

    def to_dict(self):
        return {
            'id': self.id,
            'person_role_id': self.person_role_id,
            'org_unit_id': self.org_unit_id,
            'iteration_id': self.iteration_id,
            'survey_type': self.survey_type,
            'filename': self.filename,
            'survey_results': self.survey_results,
            'analysis_voxel': self.analysis_voxel,
            'analysis_graphs': self.analysis_graphs,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


db.Index(
    'uq_surveys_individual_role',
    Survey.person_role_id,
    unique=True,
    sqlite_where=Survey.survey_type == SURVEY_INDIVIDUAL,
    postgresql_where=Survey.survey_type == SURVEY_INDIVIDUAL,
)
db.Index(
    'uq_surveys_calculated_unit',
    Survey.org_unit_id,
    unique=True,
    sqlite_where=Survey.survey_type == SURVEY_CALCULATED,
    postgresql_where=Survey.survey_type == SURVEY_CALCULATED,
)


class AppData(db.Model):
    """
    Typed application settings. Keys are limited to KNOWN_SETTINGS and
    every write records who made it and when.
    """
    __tablename__ = 'app_data'

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.Text, nullable=False, default='')

    updated_by = db.Column(db.String(200), nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'key': self.key,
            'value': self.value,
            'updated_by': self.updated_by,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
