import atexit
import logging
from datetime import timedelta

from flask import Flask
from flask_jwt_extended import JWTManager

from blog.config import Config
from blog.context import BlogContext
from blog.db import db
from blog.extensions.extensions import ma, socketio
from blog.routes.admin_routes import admin_bp
from blog.routes.auth_routes import auth_bp
from blog.routes.comment_routes import comment_bp
from blog.routes.main_routes import main_bp
from blog.routes.post_routes import post_bp
from blog.socket_events import emit_feed, register_socket_events


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(
        minutes=app.config["JWT_ACCESS_TOKEN_MINUTES"]
    )
    app.config["JWT_REFRESH_TOKEN_EXPIRES"] = timedelta(
        days=app.config["JWT_REFRESH_TOKEN_DAYS"]
    )

    logging.basicConfig(level=app.config["LOG_LEVEL"])

    db.init_app(app)
    ma.init_app(app)
    JWTManager(app)
    socketio.init_app(app)

    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(post_bp, url_prefix="/api")
    app.register_blueprint(comment_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(main_bp)
    register_socket_events()

    with app.app_context():
        db.create_all()
        context = BlogContext(app.config, render=emit_feed)
        app.extensions["blog"] = context
        context.start()

    atexit.register(context.close)
    return app
