"""
Org Survey Backend - Question Sets
==================================

Question sets are JSON files shipped in QUESTION_SET_DIR. Only the names in
ALLOWED_QUESTION_SETS can be listed or loaded, so a request can never read an
arbitrary file from disk.

File layout:
    {"name": "...", "scale": {"min": 1, "max": 8},
     "questions": [{"id": "k1", "dimension": "knowledge", "text": "..."}, ...]}

Questions are ordered knowledge, familiarity, cognitive_load with the same
number of questions per dimension, matching how survey results are split.
"""

import json
import logging
import os

from errors import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_QUESTION_SETS = (
    'questions_core.json',
    'questions_extended.json',
    'questions_short.json',
)

DEFAULT_QUESTION_SET_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data')


def is_allowed(filename):
    return filename in ALLOWED_QUESTION_SETS


def require_allowed(filename):
    """Validate a question set name given as request input"""
    if not filename:
        raise ValidationError('question_set is required')
    if not is_allowed(filename):
        raise ValidationError(f'Unknown question set: {filename}')
    return filename


def list_question_sets(directory):
    return [{'name': name} for name in ALLOWED_QUESTION_SETS
            if os.path.isfile(os.path.join(directory, name))]


def load_question_set(directory, filename):
    if not is_allowed(filename):
        logger.warning('Rejected question set request for %r', filename)
        raise PermissionDeniedError('Access to this file is not allowed')

    path = os.path.join(directory, filename)
    if not os.path.isfile(path):
        raise NotFoundError('File not found')

    # utf-8-sig strips a BOM if the file was saved with one
    with open(path, encoding='utf-8-sig') as f:
        content = f.read().strip()
    try:
        return json.loads(content)
    except ValueError:
        logger.error('Invalid JSON in question set %s', filename)
        raise ValidationError(f'Invalid JSON format in {filename}')
