import logging
import os

from flask import Flask

from config import Config
from splitledger.extensions import db


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    uri = app.config['SQLALCHEMY_DATABASE_URI']
    if uri.startswith('sqlite:///'):
        os.makedirs(os.path.dirname(uri[len('sqlite:///'):]) or '.', exist_ok=True)

    # Initialize extensions
    db.init_app(app)

    # Register blueprints
    from splitledger.routes import register_error_handlers
    from splitledger.routes.groups import groups_bp
    from splitledger.routes.expenses import expenses_bp
    from splitledger.routes.payments import payments_bp
    from splitledger.routes.settlements import settlements_bp
    from splitledger.routes.admin import admin_bp

    app.register_blueprint(groups_bp)
    app.register_blueprint(expenses_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(settlements_bp)
    app.register_blueprint(admin_bp)
    register_error_handlers(app)

    # Operator commands
    from splitledger.commands import register_commands
    register_commands(app)

    with app.app_context():
        db.create_all()
        app.logger.info("Database tables created")

    return app
