"""
Org Survey Backend - Application Settings
=========================================

Typed access to the app_data table. Only keys listed in
models.KNOWN_SETTINGS can be written, and each write stamps the writer
and the time.
"""

from datetime import datetime

from errors import ValidationError
from models import db, AppData, KNOWN_SETTINGS


def get_setting(key):
    if key not in KNOWN_SETTINGS:
        raise ValidationError(f'Unknown setting: {key}')
    row = db.session.get(AppData, key)
    if row is None:
        return {'key': key, 'value': '', 'updated_by': None, 'updated_at': None}
    return row.to_dict()


def set_setting(key, value, updated_by=None):
    """Store a setting. Does not commit."""
    if key not in KNOWN_SETTINGS:
        raise ValidationError(f'Unknown setting: {key}')
    if value is None:
        value = ''
    if not isinstance(value, str):
        raise ValidationError('Setting value must be a string')

    row = db.session.get(AppData, key)
    if row is None:
        row = AppData(key=key)
        db.session.add(row)
    row.value = value
    row.updated_by = updated_by
    row.updated_at = datetime.utcnow()
    return row
