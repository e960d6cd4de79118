# wsgi.py
"""WSGI entry point for production servers (module `wsgi`, callable `application`)"""

from app import create_app

application = create_app()
