"""
Org Survey Backend - Main Flask Application
===========================================
Last Updated: October 19, 2026

This is the main Flask application that provides the REST API for:
- Iteration management (create, create from previous, close, cascading delete)
- Organization management (units, people, role assignments)
- Survey taking (question sets, individual responses)
- Aggregation (calculated unit results averaged over the management chain)
- Settings (organizational target) and table viewers

DEPLOYMENT NOTES:
- Environment variables: DATABASE_URL, SECRET_KEY, CORS_ORIGINS,
  QUESTION_SET_DIR, LOG_LEVEL
- Run `flask --app app init-db` once to create the tables

NOTES:
- All endpoints return JSON
- Errors are raised as errors.ApiError subclasses and rendered by one handler
- Login is a plain name lookup; there is no authentication
"""

import os
import logging
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from datetime import datetime
from sqlalchemy.exc import IntegrityError

from models import (
    db, Iteration, OrganizationUnit, Person, PersonRole, Survey, AppData
)
from errors import ApiError, ValidationError, NotFoundError, ConflictError
from aggregation import calculate_unit_survey, save_individual_survey
from iterations import (
    get_active_iteration, require_active_iteration, create_iteration,
    create_next_iteration, close_active_iteration, delete_iterations_from
)
from question_sets import DEFAULT_QUESTION_SET_DIR, list_question_sets, load_question_set
from settings import get_setting, set_setting
from tree_utils import delete_unit_tree

# Logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s [%(name)s]: %(message)s'
)
logger = logging.getLogger(__name__)

# Create Flask app
app = Flask(__name__)

# Configuration
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///orgsurvey.db')
# Fix for hosted PostgreSQL URLs (postgres:// -> postgresql://)
if app.config['SQLALCHEMY_DATABASE_URI'].startswith('postgres://'):
    app.config['SQLALCHEMY_DATABASE_URI'] = app.config['SQLALCHEMY_DATABASE_URI'].replace('postgres://', 'postgresql://', 1)
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['QUESTION_SET_DIR'] = os.environ.get('QUESTION_SET_DIR', DEFAULT_QUESTION_SET_DIR)

# Initialize extensions
db.init_app(app)
migrate = Migrate(app, db)

# CORS - allow requests from the frontend
CORS(app, resources={
    r"/api/*": {
        "origins": [o.strip() for o in os.environ.get('CORS_ORIGINS', 'http://localhost:3000').split(',') if o.strip()]
    }
})

RESERVED_NAMES = ('admin',)


def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def int_field(data, *keys, required=True):
    """Read an integer from the first present key (camelCase or snake_case)"""
    for key in keys:
        value = data.get(key)
        if value is None or value == '':
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f'{key} must be an integer')
    if required:
        raise ValidationError(f'{keys[0]} is required')
    return None


# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint for monitoring"""
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.utcnow().isoformat(),
        'version': '1.0.0'
    })


# ============================================================================
# ITERATION ENDPOINTS
# ============================================================================

@app.route('/api/iterations', methods=['GET'])
def get_iterations():
    """List all iterations, oldest first"""
    iterations = Iteration.query.order_by(Iteration.id).all()
    return jsonify({'success': True, 'iterations': [i.to_dict() for i in iterations]})


@app.route('/api/iterations/active', methods=['GET'])
def get_active():
    """Get the currently open iteration"""
    iteration = require_active_iteration()
    return jsonify({'success': True, 'iteration': iteration.to_dict()})


@app.route('/api/iterations', methods=['POST'])
def post_iteration():
    """Open a new empty iteration"""
    data = get_json_body()
    iteration = create_iteration(data.get('name'), data.get('question_set'))
    return jsonify({'success': True, 'iteration': iteration.to_dict()}), 201


@app.route('/api/iterations/next', methods=['POST'])
def post_next_iteration():
    """Open a new iteration cloned from the most recently closed one"""
    data = get_json_body()
    iteration, units_copied, roles_copied = create_next_iteration(
        data.get('name'), data.get('question_set')
    )
    return jsonify({
        'success': True,
        'message': f'Iteration created with {units_copied} units and {roles_copied} roles copied.',
        'iteration': iteration.to_dict(),
        'units_copied': units_copied,
        'roles_copied': roles_copied
    }), 201


@app.route('/api/iterations/close', methods=['POST'])
def post_close_iteration():
    """Close the currently open iteration"""
    iteration = close_active_iteration()
    return jsonify({'success': True, 'iteration': iteration.to_dict()})


@app.route('/api/iterations/<int:iteration_id>', methods=['DELETE'])
def delete_iteration(iteration_id):
    """Delete an iteration and every later one, with all dependent rows"""
    delete_iterations_from(iteration_id)
    return '', 204


# ============================================================================
# ORGANIZATION ENDPOINTS
# ============================================================================

def org_data(iteration):
    units = OrganizationUnit.query.filter_by(iteration_id=iteration.id).order_by(OrganizationUnit.id).all()
    roles = PersonRole.query.filter_by(iteration_id=iteration.id).order_by(PersonRole.id).all()
    people = Person.query.order_by(Person.name).all()
    return {
        'success': True,
        'iteration': iteration.to_dict(),
        'units': [u.to_dict() for u in units],
        'roles': [r.to_dict() for r in roles],
        'people': [p.to_dict() for p in people],
    }


@app.route('/api/iterations/<int:iteration_id>/org-data', methods=['GET'])
def get_org_data(iteration_id):
    """Units and roles of one iteration, plus all people"""
    iteration = db.session.get(Iteration, iteration_id)
    if iteration is None:
        raise NotFoundError('Iteration not found')
    return jsonify(org_data(iteration))


@app.route('/api/org-snapshot', methods=['GET'])
def get_org_snapshot():
    """Org data for the active iteration"""
    return jsonify(org_data(require_active_iteration()))


@app.route('/api/org-units', methods=['POST'])
def create_org_unit():
    """Create a unit; the parent must belong to the same iteration"""
    data = get_json_body()
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Name is required.')
    iteration_id = int_field(data, 'iteration_id')
    parent_id = int_field(data, 'parent_id', required=False)

    if db.session.get(Iteration, iteration_id) is None:
        raise NotFoundError('Iteration not found')
    if parent_id is not None:
        parent = db.session.get(OrganizationUnit, parent_id)
        if parent is None or parent.iteration_id != iteration_id:
            raise ValidationError('Parent unit must belong to the same iteration')

    unit = OrganizationUnit(name=name, parent_id=parent_id, iteration_id=iteration_id)
    db.session.add(unit)
    db.session.commit()

    return jsonify({'success': True, 'unit': unit.to_dict()}), 201


@app.route('/api/org-units/<int:unit_id>', methods=['DELETE'])
def delete_org_unit(unit_id):
    """Delete a unit with all subordinate units, their roles and surveys"""
    try:
        counts = delete_unit_tree(unit_id)
        if counts is None:
            raise NotFoundError('Organization unit not found')
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return jsonify({'success': True, 'deleted': counts})


# ============================================================================
# PEOPLE & ROLE ENDPOINTS
# ============================================================================

def find_person_by_name(name):
    return Person.query.filter(db.func.lower(Person.name) == name.lower()).first()


@app.route('/api/people', methods=['GET'])
def get_people():
    """List all people"""
    people = Person.query.order_by(Person.id).all()
    return jsonify({'success': True, 'people': [p.to_dict() for p in people]})


@app.route('/api/people', methods=['POST'])
def create_person():
    """Create a person; names are unique and 'admin' is reserved"""
    data = get_json_body()
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Name required.')
    if name.lower() in RESERVED_NAMES:
        raise ValidationError(f"The name '{name}' is reserved.")
    if find_person_by_name(name):
        raise ConflictError('A person with this name already exists.')

    person = Person(name=name)
    db.session.add(person)
    db.session.commit()

    return jsonify({'success': True, 'message': 'Person created', 'person': person.to_dict()}), 201


@app.route('/api/check-person', methods=['POST'])
def check_person():
    """Login by name: return the person, creating it on first login"""
    data = get_json_body()
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Name is required')
    if name.lower() in RESERVED_NAMES:
        return jsonify({'success': True, 'message': 'Admin login', 'is_admin': True, 'person': None})

    person = find_person_by_name(name)
    if person:
        return jsonify({'success': True, 'message': 'Login successful', 'is_admin': False,
                        'person': person.to_dict()})

    person = Person(name=name)
    db.session.add(person)
    db.session.commit()
    logger.info('Created person %s on first login', person.id)
    return jsonify({'success': True, 'message': 'Person created', 'is_admin': False,
                    'person': person.to_dict()}), 201


@app.route('/api/people/<name>/roles', methods=['GET'])
def get_user_roles(name):
    """All roles of a person across iterations, with unit and iteration details"""
    person = find_person_by_name(name)
    if person is None:
        raise NotFoundError('User not found.')
    roles = PersonRole.query.filter_by(person_id=person.id).order_by(PersonRole.iteration_id, PersonRole.id).all()
    return jsonify({'success': True, 'user': person.to_dict(), 'roles': [r.to_dict(expand=True) for r in roles]})


@app.route('/api/roles', methods=['POST'])
def assign_role():
    """Assign a person to a unit within an iteration"""
    data = get_json_body()
    person_id = int_field(data, 'person_id')
    org_unit_id = int_field(data, 'org_unit_id')
    iteration_id = int_field(data, 'iteration_id')
    is_manager = data.get('is_manager', False)
    if not isinstance(is_manager, bool):
        raise ValidationError('is_manager must be true or false')

    if db.session.get(Person, person_id) is None:
        raise NotFoundError('Person not found')
    unit = db.session.get(OrganizationUnit, org_unit_id)
    if unit is None or unit.iteration_id != iteration_id:
        raise NotFoundError('Organization unit not found in this iteration')

    existing = PersonRole.query.filter_by(
        person_id=person_id, org_unit_id=org_unit_id, is_manager=is_manager, iteration_id=iteration_id
    ).first()
    if existing:
        raise ConflictError('This person already has this role in this org unit for this iteration.')

    role = PersonRole(
        person_id=person_id,
        org_unit_id=org_unit_id,
        is_manager=is_manager,
        description=data.get('description'),
        iteration_id=iteration_id
    )
    db.session.add(role)
    db.session.commit()

    return jsonify({'success': True, 'role': role.to_dict()}), 201


@app.route('/api/roles/<int:role_id>', methods=['DELETE'])
def delete_role(role_id):
    """Delete a role together with its individual survey"""
    role = db.session.get(PersonRole, role_id)
    if role is None:
        raise NotFoundError('Role not found')
    try:
        Survey.query.filter_by(person_role_id=role_id).delete(synchronize_session=False)
        db.session.delete(role)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return jsonify({'success': True})


# ============================================================================
# QUESTION SET & SURVEY ENDPOINTS
# ============================================================================

@app.route('/api/question-sets', methods=['GET'])
def get_question_sets():
    """List the allowed question set files"""
    return jsonify({'success': True, 'files': list_question_sets(app.config['QUESTION_SET_DIR'])})


@app.route('/api/question-sets/<filename>', methods=['GET'])
def get_question_set(filename):
    """Load one allowed question set file"""
    data = load_question_set(app.config['QUESTION_SET_DIR'], filename)
    return jsonify({'success': True, 'filename': filename, 'data': data})


@app.route('/api/surveys', methods=['POST'])
def post_survey():
    """Save (or replace) one person-role's survey answers"""
    data = get_json_body()
    survey = save_individual_survey(
        iteration_id=int_field(data, 'iteration_id'),
        question_set=data.get('question_set'),
        answers=data.get('answers'),
        person_role_id=int_field(data, 'person_role_id', required=False),
        person_id=int_field(data, 'person_id', required=False)
    )
    return jsonify({'success': True, 'record': survey.to_dict()}), 201


@app.route('/api/surveys', methods=['GET'])
def get_surveys():
    """List surveys, optionally for one iteration"""
    query = Survey.query
    iteration_id = int_field(request.args, 'iteration_id', required=False)
    if iteration_id is not None:
        query = query.filter_by(iteration_id=iteration_id)
    surveys = query.order_by(Survey.id).all()
    return jsonify({'success': True, 'rows': [s.to_dict() for s in surveys]})


@app.route('/api/surveys/summary', methods=['GET'])
def get_survey_summary():
    """Number of surveys per iteration"""
    rows = db.session.query(Survey.iteration_id, db.func.count(Survey.id)).group_by(
        Survey.iteration_id
    ).order_by(Survey.iteration_id).all()
    return jsonify({
        'success': True,
        'summary': [{'iteration_id': iteration_id, 'count': count} for iteration_id, count in rows]
    })


# ============================================================================
# AGGREGATION ENDPOINT
# ============================================================================

@app.route('/api/calculate', methods=['POST'])
def calculate():
    """Average the surveys of a unit and its subordinates (managers only)"""
    data = get_json_body()
    calculated, sources = calculate_unit_survey(
        org_unit_id=int_field(data, 'orgUnitId', 'org_unit_id'),
        iteration_id=int_field(data, 'iterationId', 'iteration_id'),
        person_role_id=int_field(data, 'personRoleId', 'person_role_id')
    )
    return jsonify({
        'success': True,
        'message': f'Calculation completed from {len(sources)} surveys.',
        'calculationResult': {
            'filename': calculated.filename,
            'data': calculated.to_dict()
        },
        'sourceFiles': [{
            'surveyId': s.id,
            'filename': s.filename,
            'personRoleId': s.person_role_id,
            'orgUnitId': s.org_unit_id,
            'voxel': s.analysis_voxel
        } for s in sources]
    })


# ============================================================================
# SETTINGS & TABLE VIEWER ENDPOINTS
# ============================================================================

@app.route('/api/app-data/<key>', methods=['GET'])
def get_app_data(key):
    """Read one setting"""
    return jsonify({'success': True, 'setting': get_setting(key)})


@app.route('/api/app-data/<key>', methods=['PUT'])
def put_app_data(key):
    """Write one setting, recording who changed it"""
    data = get_json_body()
    row = set_setting(key, data.get('value'), updated_by=data.get('updated_by'))
    db.session.commit()
    return jsonify({'success': True, 'setting': row.to_dict()})


@app.route('/api/all-tables-data', methods=['GET'])
def get_all_tables_data():
    """Dump every table (admin table viewer)"""
    return jsonify({
        'iterations': [i.to_dict() for i in Iteration.query.order_by(Iteration.id)],
        'organization_units': [u.to_dict() for u in OrganizationUnit.query.order_by(OrganizationUnit.id)],
        'people': [p.to_dict() for p in Person.query.order_by(Person.id)],
        'person_roles': [r.to_dict() for r in PersonRole.query.order_by(PersonRole.id)],
        'surveys': [s.to_dict() for s in Survey.query.order_by(Survey.id)],
        'app_data': [a.to_dict() for a in AppData.query.order_by(AppData.key)],
    })


# ============================================================================
# DATABASE INITIALIZATION
# ============================================================================

@app.cli.command('init-db')
def init_db():
    """Initialize the database tables"""
    db.create_all()
    print('Database tables created.')


@app.route('/api/setup/status', methods=['GET'])
def setup_status():
    """Check the current database setup status"""
    try:
        active = get_active_iteration()
        return jsonify({
            'database_connected': True,
            'iterations': Iteration.query.count(),
            'active_iteration': active.id if active else None,
            'organization_units': OrganizationUnit.query.count(),
            'people': Person.query.count(),
            'surveys': Survey.query.count()
        })
    except Exception as e:
        logger.exception('Setup status check failed')
        return jsonify({
            'database_connected': False,
            'error': str(e)
        }), 500


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.errorhandler(ApiError)
def api_error(error):
    if error.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.path, error.message)
    else:
        logger.warning('%s %s rejected (%d): %s', request.method, request.path, error.status_code, error.message)
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(IntegrityError)
def integrity_error(error):
    db.session.rollback()
    logger.warning('%s %s violated a constraint: %s', request.method, request.path, error.orig)
    return jsonify(ConflictError('The change conflicts with existing data.').to_dict()), 409


@app.errorhandler(404)
def not_found(error):
    return jsonify({'success': False, 'message': 'Not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'success': False, 'message': 'Method not allowed'}), 405


@app.errorhandler(500)
def server_error(error):
    db.session.rollback()
    logger.error('Unhandled error on %s %s', request.method, request.path,
                 exc_info=getattr(error, 'original_exception', None))
    return jsonify({'success': False, 'message': 'Internal server error'}), 500


# ============================================================================
# MAIN
# ============================================================================

if __name__ == '__main__':
    with app.app_context():
        db.create_all()
    app.run(debug=True, port=5000)
