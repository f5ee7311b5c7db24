from flask import Blueprint

api_bp = Blueprint('api', __name__, url_prefix='/api')

# Register sub-blueprints
from .bot_detection_routes import bot_detection_api_bp  # noqa: E402
from .security_routes import security_api_bp  # noqa: E402

api_bp.register_blueprint(bot_detection_api_bp)
api_bp.register_blueprint(security_api_bp)
