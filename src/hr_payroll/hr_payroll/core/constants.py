"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

DEFAULT_SESSION_DAYS = 7
DEFAULT_LIST_LIMIT = 200
DEFAULT_WORKING_DAYS_PER_YEAR = 261
DEFAULT_HOURS_PER_DAY = 8
DEFAULT_BREAK_MINUTES = 60
DEFAULT_OVERTIME_MULTIPLIER = "1.25"
DEFAULT_NIGHT_DIFF_RATE = "0.10"
NIGHT_DIFF_START_HOUR = 22
NIGHT_DIFF_END_HOUR = 6

REQUEST_NUMBER_ATTEMPTS = 5
MIN_OVERTIME_HOURS = 1
DTR_MANUAL_LEAVE_REFERENCE = "DTR_MANUAL_LEAVE"

MATERIAL_REQUEST_MAX_ITEMS = 300
MATERIAL_REQUEST_MAX_STEPS = 4
MATERIAL_REQUEST_QUANTITY_TOLERANCE = "0.0005"

EMPLOYEE_BULK_MAX_ROWS = 2000
EMPLOYEE_BULK_CLEAR_TOKEN = "__CLEAR__"
