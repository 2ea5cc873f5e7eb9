"""
Configuration constants for the ID scan catalog.
"""

# --- Primary Store Keys ---
STORAGE_KEY = 'idScanPro_scanHistory'
SETTINGS_KEY = 'idScanPro_settings'

# --- Retention ---
# Collection is truncated to MAX_ENTRIES once its estimated size passes this ceiling.
MAX_STORAGE_SIZE = 50 * 1024 * 1024  # 50 MB
MAX_ENTRIES = 1000

# --- Backup Store ---
BACKUP_COLLECTION = 'scans'
BACKUP_KEY = 'backup'

# --- Tagging ---
DOCUMENT_TAG = 'Driver License'

# --- Export ---
EXPORT_CONTENT_TYPES = {
    'json': 'application/json',
    'csv': 'text/csv',
    'pdf': 'application/pdf',
}
EXPORT_FILENAME = "id-scan-export-{date}.{ext}"

# CSV column -> decoded field label (None = taken from the Scan itself)
CSV_COLUMNS = [
    ('ID', None),
    ('Timestamp', None),
    ('Full Name', 'Full Name'),
    ('First Name', 'First Name'),
    ('Last Name', 'Last Name'),
    ('Date of Birth', 'Date of Birth'),
    ('License Number', 'License Number'),
    ('State', 'State'),
    ('Address', 'Street Address 1'),
    ('City', 'City'),
    ('ZIP', 'ZIP Code'),
    ('Gender', 'Gender'),
    ('Height', 'Height'),
    ('Weight', 'Weight (lbs)'),
    ('Eye Color', 'Eye Color'),
    ('Hair Color', 'Hair Color'),
    ('Notes', None),
    ('Tags', None),
]

PDF_SEPARATOR = "----------------------------"

# --- Paths ---
DEFAULT_DB_NAME = "id_scans.db"
DEFAULT_BACKUP_DB_NAME = "id_scans_backup.db"
