"""
Admission control for Contour resources
"""

# Local
from .validator import AdmissionResult, validate
from .webhook import admission_response, create_app, review
