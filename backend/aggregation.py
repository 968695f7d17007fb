"""
Org Survey Backend - Survey Aggregation
=======================================

Saves individual survey responses and rolls them up into a 'calculated'
survey for a unit. The calculation averages every individual survey that
belongs to the unit or to any of its subordinate units in the same
iteration, then runs the voxel analysis on the averaged vector.

Only manager roles may trigger a calculation.
"""

import logging

from sqlalchemy import or_

from errors import NotFoundError, PermissionDeniedError, ValidationError
from models import (
    db, Iteration, OrganizationUnit, PersonRole, Survey,
    SURVEY_INDIVIDUAL, SURVEY_CALCULATED
)
from question_sets import require_allowed
from tree_utils import subtree_unit_ids
from voxel import analyze_results, average_results

logger = logging.getLogger(__name__)


def _coerce_results(answers):
    if not isinstance(answers, list):
        raise ValidationError('answers must be a list of numbers')
    values = []
    for answer in answers:
        if isinstance(answer, bool) or not isinstance(answer, (int, float)):
            raise ValidationError('answers must be a list of numbers')
        values.append(answer)
    return values


def save_individual_survey(iteration_id, question_set, answers, person_role_id=None, person_id=None):
    """
    Store one person-role's answers, replacing any earlier answers of
    that role. The role can be given directly or looked up from person_id.
    """
    if not iteration_id:
        raise ValidationError('iteration_id is required')
    require_allowed(question_set)
    results = _coerce_results(answers)

    if db.session.get(Iteration, iteration_id) is None:
        raise NotFoundError('Iteration not found')

    role = None
    if person_role_id:
        role = db.session.get(PersonRole, person_role_id)
    elif person_id:
        role = PersonRole.query.filter_by(person_id=person_id, iteration_id=iteration_id).order_by(
            PersonRole.id
        ).first()
    if role is None:
        raise NotFoundError('Person role not found')
    if role.iteration_id != iteration_id:
        raise ValidationError('Person role does not belong to this iteration')

    voxel, graphs = analyze_results(results)

    survey = Survey.query.filter_by(person_role_id=role.id, survey_type=SURVEY_INDIVIDUAL).first()
    if survey is None:
        survey = Survey(person_role_id=role.id, survey_type=SURVEY_INDIVIDUAL)
        db.session.add(survey)
    survey.org_unit_id = role.org_unit_id
    survey.iteration_id = iteration_id
    survey.filename = question_set
    survey.survey_results = results
    survey.analysis_voxel = voxel
    survey.analysis_graphs = graphs

    db.session.commit()
    return survey


def find_source_surveys(unit_ids, iteration_id):
    """Individual surveys whose unit, or whose role's unit, is in unit_ids"""
    return Survey.query.outerjoin(PersonRole, Survey.person_role_id == PersonRole.id).filter(
        Survey.iteration_id == iteration_id,
        Survey.survey_type == SURVEY_INDIVIDUAL,
        or_(Survey.org_unit_id.in_(unit_ids), PersonRole.org_unit_id.in_(unit_ids))
    ).order_by(Survey.id).all()


def calculated_filename(org_unit_id, iteration_id):
    return f'calculated_unit_{org_unit_id}_iteration_{iteration_id}.json'


def calculate_unit_survey(org_unit_id, iteration_id, person_role_id):
    """
    Average the individual surveys of a unit and its subordinate units and
    store the result as the unit's calculated survey.

    Returns (calculated_survey, source_surveys).
    """
    if not org_unit_id or not iteration_id or not person_role_id:
        raise ValidationError('personRoleId, orgUnitId and iterationId are required')

    role = db.session.get(PersonRole, person_role_id)
    if role is None:
        raise NotFoundError('Person role not found')
    if not role.is_manager:
        logger.warning('Role %s is not a manager, calculation refused', person_role_id)
        raise PermissionDeniedError('Only managers can calculate unit results')

    unit = db.session.get(OrganizationUnit, org_unit_id)
    if unit is None or unit.iteration_id != iteration_id:
        raise NotFoundError('Organization unit not found in this iteration')

    try:
        unit_ids = subtree_unit_ids(unit.id, iteration_id)
        sources = find_source_surveys(unit_ids, iteration_id)
        if not sources:
            raise NotFoundError('No individual surveys found for this unit and its subordinates')

        raw, ceiled = average_results([s.survey_results for s in sources])
        voxel, graphs = analyze_results(raw)

        calculated = Survey.query.filter_by(org_unit_id=unit.id, survey_type=SURVEY_CALCULATED).first()
        if calculated is None:
            calculated = Survey(org_unit_id=unit.id, survey_type=SURVEY_CALCULATED)
            db.session.add(calculated)
        calculated.iteration_id = iteration_id
        calculated.filename = calculated_filename(unit.id, iteration_id)
        calculated.survey_results = ceiled
        calculated.analysis_voxel = voxel
        calculated.analysis_graphs = graphs

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info('Calculated unit %s in iteration %s from %d surveys over %d units',
                unit.id, iteration_id, len(sources), len(unit_ids))
    return calculated, sources
