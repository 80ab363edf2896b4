"""
ORM models.

Importing this package registers every table with ``Base.metadata`` so that
``create_all`` and Alembic autogenerate see the full schema.
"""

from civicform.models.app_setting import AppSetting
from civicform.models.logs import ApiUsage, ErrorLog
from civicform.models.submission import Submission, SubmissionStatus
from civicform.models.webform_structure import WebformStructure

__all__ = [
    "ApiUsage",
    "AppSetting",
    "ErrorLog",
    "Submission",
    "SubmissionStatus",
    "WebformStructure",
]
