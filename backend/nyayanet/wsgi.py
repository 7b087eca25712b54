"""
WSGI config for nyayanet project.
"""
import os
from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'nyayanet.settings')
application = get_wsgi_application()
