"""
Org Survey Backend - Iteration Lifecycle
========================================

An iteration is OPEN while end_date is NULL and CLOSED once it is stamped.
Closing is one-way. At most one iteration is open at any time; the check
here gives a readable error and the partial unique index on
iterations(end_date IS NULL) catches concurrent creates.

Every function that writes runs in the current session and either commits
once at the end or rolls back and re-raises.
"""

import logging
from datetime import datetime

from errors import NotFoundError, ValidationError
from models import (
    db, Iteration, OrganizationUnit, PersonRole, Survey, SETTING_TARGET
)
from question_sets import require_allowed
from settings import set_setting
from tree_utils import clone_org_structure

logger = logging.getLogger(__name__)


def get_active_iteration():
    return Iteration.query.filter(Iteration.end_date.is_(None)).order_by(
        Iteration.start_date.desc()
    ).first()


def get_last_closed_iteration():
    return Iteration.query.filter(Iteration.end_date.isnot(None)).order_by(
        Iteration.end_date.desc(), Iteration.id.desc()
    ).first()


def require_active_iteration():
    iteration = get_active_iteration()
    if iteration is None:
        raise NotFoundError('No active iteration found')
    return iteration


def _require_name(name):
    if not name or not str(name).strip():
        raise ValidationError('Name is required.')
    return str(name).strip()


def _ensure_no_active_iteration():
    if get_active_iteration() is not None:
        raise ValidationError('An active iteration already exists.')


def create_iteration(name, question_set):
    """Open a new, empty iteration"""
    name = _require_name(name)
    require_allowed(question_set)
    _ensure_no_active_iteration()

    iteration = Iteration(name=name, question_set=question_set, start_date=datetime.utcnow())
    db.session.add(iteration)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info('Opened iteration %s (%s)', iteration.id, iteration.name)
    return iteration


def create_next_iteration(name, question_set=None):
    """
    Open a new iteration cloned from the most recently closed one.

    The unit tree and role assignments are copied in the same transaction
    as the iteration insert; on any failure nothing is kept.
    Returns (iteration, units_copied, roles_copied).
    """
    name = _require_name(name)
    _ensure_no_active_iteration()

    previous = get_last_closed_iteration()
    if previous is None:
        raise ValidationError('No closed iteration to continue from.')

    question_set = question_set or previous.question_set
    require_allowed(question_set)

    try:
        iteration = Iteration(name=name, question_set=question_set, start_date=datetime.utcnow())
        db.session.add(iteration)
        db.session.flush()  # Get the ID

        id_map, roles_copied = clone_org_structure(previous.id, iteration.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception('Creating next iteration from %s failed', previous.id)
        raise

    logger.info('Opened iteration %s from %s: %d units, %d roles',
                iteration.id, previous.id, len(id_map), roles_copied)
    return iteration, len(id_map), roles_copied


def close_active_iteration():
    iteration = require_active_iteration()
    iteration.end_date = datetime.utcnow()
    db.session.commit()
    logger.info('Closed iteration %s', iteration.id)
    return iteration


def delete_iterations_from(iteration_id):
    """
    Delete an iteration and every later one (id >= iteration_id) together
    with their surveys, roles and units. The id itself need not exist, only
    some iteration at or after it.

    If the earliest iteration is among them, the organizational target is
    reset as well. Returns the list of deleted iteration ids.
    """
    ids = [row.id for row in Iteration.query.filter(Iteration.id >= iteration_id).order_by(Iteration.id)]
    if not ids:
        raise NotFoundError('No iteration with this id or a later one')
    first_id = db.session.query(db.func.min(Iteration.id)).scalar()

    try:
        surveys = Survey.query.filter(Survey.iteration_id.in_(ids)).delete(synchronize_session=False)
        roles = PersonRole.query.filter(PersonRole.iteration_id.in_(ids)).delete(synchronize_session=False)

        # Detach parents first so no unit points at an already deleted one
        OrganizationUnit.query.filter(OrganizationUnit.iteration_id.in_(ids)).update(
            {OrganizationUnit.parent_id: None}, synchronize_session=False
        )
        units = OrganizationUnit.query.filter(
            OrganizationUnit.iteration_id.in_(ids)
        ).delete(synchronize_session=False)

        Iteration.query.filter(Iteration.id.in_(ids)).delete(synchronize_session=False)

        if first_id in ids:
            set_setting(SETTING_TARGET, '', updated_by='system')

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception('Deleting iterations from %s failed', iteration_id)
        raise

    logger.info('Deleted iterations %s: %d surveys, %d roles, %d units', ids, surveys, roles, units)
    return ids
