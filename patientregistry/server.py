"""The HTTP side: a health check, and nothing else.

All registry data lives with the clients; no route reads or writes it.
"""
import logging

from flask import Flask

logger = logging.getLogger(__name__)


def create_app():
    logger.info("SERVER STARTING")
    app = Flask(__name__)

    @app.route('/api/health', methods=['GET'])
    def health():
        return {'status': 'ok', 'message': 'Server is running'}

    return app
