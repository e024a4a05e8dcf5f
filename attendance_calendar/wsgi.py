"""
WSGI config for attendance_calendar project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'attendance_calendar.settings')

application = get_wsgi_application()
