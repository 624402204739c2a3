"""
WSGI config for socialfeed project.
"""
import os
from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'socialfeed.settings')
application = get_wsgi_application()
