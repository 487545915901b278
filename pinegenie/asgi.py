"""
ASGI config for pinegenie.

Plain HTTP; the payments webhook and return URL are ordinary Django views.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "pinegenie.settings")

from django.core.asgi import get_asgi_application

application = get_asgi_application()
