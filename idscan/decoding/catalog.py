"""
AAMVA field catalog.

Order matters: the decoder walks this list front to back, so earlier entries
win when two entries would produce the same label. Some codes appear twice
under different labels on purpose.
"""
from typing import List

from ..models import FieldDefinition
from .formatters import format_date, format_gender, format_height, format_zip

FIELD_CATALOG: List[FieldDefinition] = [
    # Names
    FieldDefinition('DCS', 'Last Name'),
    FieldDefinition('DCT', 'First Name (Full)'),  # Older cards; preferred over DAC when present
    FieldDefinition('DAC', 'First Name'),
    FieldDefinition('DAD', 'Middle Name'),

    # Personal
    FieldDefinition('DBB', 'Date of Birth', format_date),
    FieldDefinition('DBC', 'Gender', format_gender),
    FieldDefinition('DAU', 'Height', format_height),
    FieldDefinition('DAY', 'Eye Color'),

    # Address
    FieldDefinition('DAG', 'Street Address 1'),
    FieldDefinition('DAH', 'Street Address 2'),
    FieldDefinition('DAI', 'City'),
    FieldDefinition('DAJ', 'State'),
    FieldDefinition('DAK', 'ZIP Code', format_zip),

    # Document
    FieldDefinition('DAQ', 'License Number'),
    FieldDefinition('DCF', 'Document Discriminator'),
    FieldDefinition('DCG', 'Country Identification'),
    FieldDefinition('DDE', 'Last Name Truncation'),
    FieldDefinition('DDF', 'First Name Truncation'),
    FieldDefinition('DDG', 'Middle Name Truncation'),

    # Dates
    FieldDefinition('DBD', 'Issue Date', format_date),
    FieldDefinition('DBA', 'Expiration Date', format_date),
    FieldDefinition('DDH', 'Under 18 Until', format_date),
    FieldDefinition('DDI', 'Under 19 Until', format_date),
    FieldDefinition('DDJ', 'Under 21 Until', format_date),

    # Physical
    FieldDefinition('DAW', 'Weight (lbs)'),
    FieldDefinition('DAZ', 'Hair Color'),

    # Classification / Endorsements / Restrictions
    FieldDefinition('DCA', 'Jurisdiction-specific vehicle class'),
    FieldDefinition('DCB', 'Jurisdiction-specific restriction codes'),
    FieldDefinition('DCD', 'Jurisdiction-specific endorsement codes'),
    FieldDefinition('DCH', 'Federal Commercial Vehicle Codes'),

    # Misc
    FieldDefinition('DAZ', 'Hair Color'),
    FieldDefinition('DCK', 'Customer ID Number (if different from DAQ)'),
    FieldDefinition('DBN', 'Full Name'),
    FieldDefinition('DCL', 'Race/Ethnicity'),
    FieldDefinition('DCR', 'Compliance Type'),
    FieldDefinition('DCS', 'Family Name / Last Name'),
    FieldDefinition('DCT', 'Given Name / First Name'),
]

KNOWN_CODES = frozenset(d.code for d in FIELD_CATALOG)
