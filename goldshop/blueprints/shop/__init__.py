from flask import Blueprint

shop_bp = Blueprint("shop", __name__)

from . import cart      # noqa: E402,F401
from . import checkout  # noqa: E402,F401
