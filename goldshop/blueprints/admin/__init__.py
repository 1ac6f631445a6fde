from flask import Blueprint

admin_bp = Blueprint('admin', __name__)

# Import route modules to register their endpoints
from . import manual_payments  # noqa: E402,F401
from . import orders           # noqa: E402,F401
from . import notifications    # noqa: E402,F401
